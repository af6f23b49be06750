from jobqueue.workers.job_handlers.base_handler import BaseJobHandler, FunctionHandler, JobContext
from jobqueue.workers.job_handlers.cleanup_handler import CleanupHandler
from jobqueue.workers.job_handlers.analytics_handler import AnalyticsHandler


__all__ = [
    'BaseJobHandler',
    'FunctionHandler',
    'JobContext',
    'CleanupHandler',
    'AnalyticsHandler',
]

from jobqueue.core import config
from jobqueue.core.config import settings
from jobqueue.core.setup_logger import api_logger, worker_logger, scheduler_logger, db_logger

__all__ = [
    'config',
    'settings',
    'worker_logger',
    'scheduler_logger',
    'db_logger',
    'api_logger',
]

from jobqueue.constants.job_types import JobTypes
from jobqueue.constants.queue_status import JobStatus, JobEvent, LogLevel, TERMINAL_STATUSES

__all__ = [
    'JobTypes',
    'JobStatus',
    'JobEvent',
    'LogLevel',
    'TERMINAL_STATUSES',
]

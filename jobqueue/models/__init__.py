from jobqueue.models.base_model import BaseModel, UTCDateTime, utcnow
from jobqueue.models.jobs_model import Job
from jobqueue.models.job_log_model import JobLog
from jobqueue.models.schedule_model import Schedule

__all__ = [
    'BaseModel',
    'UTCDateTime',
    'utcnow',
    'Job',
    'JobLog',
    'Schedule',
]

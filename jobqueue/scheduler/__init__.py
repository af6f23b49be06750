from jobqueue.scheduler.cadence import Cadence, parse_cadence
from jobqueue.scheduler.defaults import default_schedules, enqueue_cleanup_jobs
from jobqueue.scheduler.registry import ScheduleRegistry, due_instant

__all__ = [
    'Cadence',
    'parse_cadence',
    'default_schedules',
    'enqueue_cleanup_jobs',
    'ScheduleRegistry',
    'due_instant',
]

from jobqueue.repositories.job_repository import JobRepository
from jobqueue.repositories.schedule_repository import ScheduleRepository

__all__ = [
    'JobRepository',
    'ScheduleRepository',
]

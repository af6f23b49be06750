from .job_schemas import (
    JobCreate,
    JobResponse,
    JobLogResponse,
    JobStats,
    get_valid_statuses
)
from .schedule_schemas import (
    ScheduleCreate,
    ScheduleResponse,
)

__all__ = [
    "JobCreate",
    "JobResponse",
    "JobLogResponse",
    "JobStats",
    "ScheduleCreate",
    "ScheduleResponse",
    "get_valid_statuses"
]

from enum import Enum


class JobStatus(Enum):
    pending = "pending"
    leased = "leased"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = (JobStatus.completed.value, JobStatus.failed.value)


class JobEvent(Enum):
    """Entries of a job's activity log, one per lifecycle transition"""
    enqueued = "enqueued"
    claimed = "claimed"
    completed = "completed"
    retry_scheduled = "retry_scheduled"
    failed = "failed"
    reclaimed = "reclaimed"
    requeued = "requeued"


class LogLevel(Enum):
    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"

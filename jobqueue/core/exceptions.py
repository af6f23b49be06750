"""
Error taxonomy of the job queue
"""
from typing import Optional


class JobQueueError(Exception):
    """Base class for all job queue errors"""


class StoreUnavailable(JobQueueError):
    """The durable job store cannot be reached. Transient; callers back off and retry."""


class LeaseMismatch(JobQueueError):
    """The caller no longer holds the lease on the job. The result must be dropped."""

    def __init__(self, job_id: int, worker_id: str, message: Optional[str] = None):
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(message or f"Worker '{worker_id}' does not hold the lease on job {job_id}")


class HandlerError(JobQueueError):
    """A handler reported a domain failure. Counted against the job's retry budget."""


class HandlerTimeout(HandlerError):
    """A handler did not finish within the lease duration"""


class ScheduleMisconfigured(JobQueueError):
    """A schedule's cadence or job template cannot be used"""

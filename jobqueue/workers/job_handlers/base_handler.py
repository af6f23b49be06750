"""
Base handler class for all job handlers
Provides common functionality and interface
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, Awaitable, Callable
from jobqueue.core.setup_logger import worker_logger


@dataclass(frozen=True)
class JobContext:
    """
    What a handler may know about the job besides its payload.
    Delivery is at-least-once, so handlers de-duplicate on job_id.
    """
    job_id: int
    job_type: str
    attempt: int
    max_retries: int
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_job(cls, job) -> "JobContext":
        return cls(
            job_id=job.id,
            job_type=job.job_type,
            attempt=job.attempt_count,
            max_retries=job.max_retries,
            tenant_id=job.tenant_id,
            user_id=job.user_id,
        )


class BaseJobHandler(ABC):
    """
    Base class for all job handlers
    All handlers should inherit from this class
    """

    def __init__(self):
        self.logger = worker_logger

    @abstractmethod
    async def execute(self, payload: Dict[str, Any], context: JobContext) -> Optional[Dict[str, Any]]:
        """
        Execute the job handler

        Args:
            payload: Job payload data
            context: Job id, attempt number and scoping ids

        Returns:
            Result dictionary, stored on the job when it completes

        Raises:
            HandlerError (or any exception): the attempt failed
        """
        pass

    @property
    @abstractmethod
    def job_type(self) -> str:
        """Return the job type this handler processes"""
        pass


class FunctionHandler(BaseJobHandler):
    """Adapts a plain coroutine function `fn(payload, context)` to the handler interface"""

    def __init__(
            self,
            job_type: str,
            fn: Callable[[Dict[str, Any], JobContext], Awaitable[Optional[Dict[str, Any]]]],
    ):
        super().__init__()
        self._job_type = job_type
        self._fn = fn

    @property
    def job_type(self) -> str:
        return self._job_type

    async def execute(self, payload: Dict[str, Any], context: JobContext) -> Optional[Dict[str, Any]]:
        return await self._fn(payload, context)

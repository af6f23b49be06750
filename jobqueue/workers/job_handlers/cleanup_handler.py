"""
Retention / cleanup job handler
"""
from typing import Dict, Any, Optional, Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.constants.job_types import JobTypes
from jobqueue.core.exceptions import HandlerError
from jobqueue.core.logger import info, debug, warning
from jobqueue.db import database
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler, JobContext

# fn(days_to_keep) -> number of records removed
Sweeper = Callable[[float], Awaitable[int]]


class CleanupHandler(BaseJobHandler):
    """
    Handler for cleanup jobs.

    `old_jobs` sweeps finished jobs out of the queue itself. Other cleanup
    types (caches, invites, ...) belong to the embedding application, which
    registers a sweeper for them.
    """

    def __init__(
            self,
            session_factory: Optional[async_sessionmaker] = None,
            job_repository: Optional[JobRepository] = None,
    ):
        super().__init__()
        self._session_factory = session_factory
        self.job_repository = job_repository or JobRepository()
        self.sweepers: Dict[str, Sweeper] = {"old_jobs": self._sweep_old_jobs}

    @property
    def job_type(self) -> str:
        return JobTypes.cleanup.value

    def register_sweeper(self, cleanup_type: str, sweeper: Sweeper) -> None:
        info(self.logger, f"Registering sweeper for cleanup_type: {cleanup_type}")
        self.sweepers[cleanup_type] = sweeper

    async def _sweep_old_jobs(self, days_to_keep: float) -> int:
        session_factory = self._session_factory or await database.get_session_factory()
        async with session_factory() as db:
            deleted = await self.job_repository.cleanup_finished_jobs(db, older_than_days=days_to_keep)
            await db.commit()
        return deleted

    async def execute(self, payload: Dict[str, Any], context: JobContext) -> Dict[str, Any]:
        """
        Expected payload:
        {
            "cleanup_type": "old_jobs|expired_cache|expired_invites|...",
            "days_to_keep": 30
        }
        """
        debug(self.logger, "Cleanup handler started", context={"job_id": context.job_id, **payload})

        cleanup_type = payload.get("cleanup_type")
        days_to_keep = payload.get("days_to_keep", 30)

        if not cleanup_type:
            raise HandlerError("cleanup_type is required")
        if not isinstance(days_to_keep, (int, float)) or days_to_keep < 0:
            raise HandlerError(f"days_to_keep must be a non-negative number, got {days_to_keep!r}")

        sweeper = self.sweepers.get(cleanup_type)
        if sweeper is None:
            warning(self.logger, "No sweeper registered for cleanup type, skipping", context={
                "job_id": context.job_id,
                "cleanup_type": cleanup_type,
                "available_types": sorted(self.sweepers),
            })
            return {"status": "skipped", "cleanup_type": cleanup_type}

        removed = await sweeper(days_to_keep)

        result = {
            "status": "cleaned",
            "cleanup_type": cleanup_type,
            "days_to_keep": days_to_keep,
            "removed": removed,
        }
        info(self.logger, "Cleanup finished", context=result)
        return result

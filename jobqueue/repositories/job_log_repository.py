from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import insert, delete

from jobqueue.constants.queue_status import JobEvent, LogLevel
from jobqueue.models.base_model import utcnow
from jobqueue.models.job_log_model import JobLog
from jobqueue.repositories.base_repository import AsyncBaseRepository, store_operation


class JobLogRepository(AsyncBaseRepository[JobLog]):
    """
    Per-job activity log. Entries are written inside the caller's transaction,
    so a log row exists exactly when the transition it describes committed.
    """

    def __init__(self):
        super().__init__(JobLog)

    async def record(
            self,
            db: AsyncSession,
            *,
            job_id: int,
            event: JobEvent,
            message: str,
            attempt: int = 0,
            level: LogLevel = LogLevel.info,
            details: Optional[Dict[str, Any]] = None,
            now: Optional[datetime] = None,
    ):
        now = now or utcnow()
        await db.execute(
            insert(JobLog).values(
                job_id=job_id,
                event=event.value,
                level=level.value,
                attempt=attempt,
                message=message,
                details=details or {},
                created_at=now,
                updated_at=now,
            )
        )

    async def list_for_job(self, db: AsyncSession, job_id: int) -> List[JobLog]:
        """A job's log, oldest entry first"""
        return await self.get_by_condition(
            db,
            {"job_id": job_id},
            order_by=[JobLog.created_at.asc(), JobLog.id.asc()],
        )

    @store_operation
    async def delete_for_jobs(self, db: AsyncSession, job_ids) -> int:
        """Delete the logs of the given jobs; `job_ids` may be a list or a subquery"""
        stmt = (
            delete(JobLog)
            .where(JobLog.job_id.in_(job_ids))
            .execution_options(synchronize_session=False)
        )
        outcome = await db.execute(stmt)
        return outcome.rowcount

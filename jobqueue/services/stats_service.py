"""
Stats Aggregator: read-only rollup over the job store
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.core.config import settings
from jobqueue.models.base_model import utcnow
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.schemas.job_schemas import JobStats, get_valid_statuses


class StatsService:
    def __init__(self, repo: Optional[JobRepository] = None):
        self.repo = repo or JobRepository()

    async def snapshot(
            self,
            db: AsyncSession,
            tenant_id: Optional[str] = None,
            window: Optional[timedelta] = None,
            now: Optional[datetime] = None,
    ) -> JobStats:
        """
        Counts by status and type, mean time-to-completion of jobs completed
        within the trailing window, and the age of the oldest pending job.
        """
        now = now or utcnow()
        window = window or timedelta(hours=settings.STATS_WINDOW_HOURS)

        by_status = await self.repo.count_by_status(db, tenant_id)
        counts = {status: by_status.get(status, 0) for status in get_valid_statuses()}

        spans = await self.repo.completion_spans(db, since=now - window, tenant_id=tenant_id)
        avg_completion = None
        if spans:
            avg_completion = sum((completed - created).total_seconds() for created, completed in spans) / len(spans)

        oldest_pending = await self.repo.oldest_pending_created_at(db, tenant_id)
        oldest_pending_age = None
        if oldest_pending is not None:
            oldest_pending_age = max((now - oldest_pending).total_seconds(), 0.0)

        return JobStats(
            counts=counts,
            total=sum(by_status.values()),
            type_counts=await self.repo.count_by_type(db, tenant_id),
            avg_completion_seconds=avg_completion,
            completed_in_window=len(spans),
            oldest_pending_age_seconds=oldest_pending_age,
            window_hours=window.total_seconds() / 3600,
            tenant_id=tenant_id,
            generated_at=now,
        )

from typing import Optional, List

from fastapi import HTTPException
from sqlalchemy.ext.asyncio.session import AsyncSession

from jobqueue.constants.queue_status import JobStatus
from jobqueue.core import api_logger
from jobqueue.core.exceptions import ScheduleMisconfigured
from jobqueue.core.logger import info
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.repositories.schedule_repository import ScheduleRepository
from jobqueue.schemas import JobCreate, JobResponse, JobLogResponse, JobStats, ScheduleCreate, ScheduleResponse
from jobqueue.scheduler.cadence import parse_cadence
from jobqueue.services.stats_service import StatsService


class JobService:
    """
    HTTP-facing operations. StoreUnavailable propagates to the app-level
    handler, which answers 503.
    """

    def __init__(
            self,
            repo: JobRepository,
            stats: Optional[StatsService] = None,
            schedules: Optional[ScheduleRepository] = None,
    ):
        self.repo = repo
        self.stats = stats or StatsService(repo)
        self.schedules = schedules or ScheduleRepository()

    async def create_job(self, job_data: JobCreate, db: AsyncSession) -> JobResponse:
        job = await self.repo.enqueue_job(
            db,
            job_type=job_data.job_type,
            payload=job_data.payload,
            priority=job_data.priority,
            max_retries=job_data.max_retries,
            tenant_id=job_data.tenant_id,
            user_id=job_data.user_id,
            available_at=job_data.available_at,
        )
        await db.commit()

        info(api_logger, "Job created", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "priority": job.priority,
        })
        return JobResponse.model_validate(job)

    async def list_jobs(
            self,
            status: Optional[JobStatus],
            job_type: Optional[str],
            tenant_id: Optional[str],
            skip: int,
            limit: int,
            db: AsyncSession,
    ) -> List[JobResponse]:
        """
        List jobs, newest first, filtered by status, type or tenant.
        """
        jobs = await self.repo.list_jobs(
            db,
            status=status.value if status else None,
            job_type=job_type,
            tenant_id=tenant_id,
            skip=skip,
            limit=limit,
        )
        return [JobResponse.model_validate(job) for job in jobs]

    async def get_job(self, job_id: int, db: AsyncSession) -> JobResponse:
        job = await self.repo.get(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return JobResponse.model_validate(job)

    async def get_job_logs(self, job_id: int, db: AsyncSession) -> List[JobLogResponse]:
        if not await self.repo.get(db, job_id):
            raise HTTPException(status_code=404, detail="Job not found")

        logs = await self.repo.logs.list_for_job(db, job_id)
        return [JobLogResponse.model_validate(entry) for entry in logs]

    async def cancel_job(self, job_id: int, db: AsyncSession) -> dict:
        """
        Cancel a job by deleting it.
        Only 'pending' jobs can be cancelled; a leased job runs to completion or timeout.
        """
        job = await self.repo.get(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        if not await self.repo.delete_pending_job(db, job_id):
            raise HTTPException(
                status_code=409,
                detail=f"Cannot cancel job with status '{job.status}'. Only 'pending' jobs can be cancelled."
            )
        await db.commit()

        info(api_logger, "Job cancelled", context={"job_id": job_id})
        return {"message": f"Job {job_id} cancelled successfully"}

    async def retry_job(self, job_id: int, db: AsyncSession) -> JobResponse:
        """
        Manually requeue a failed job with a fresh attempt budget.
        """
        job = await self.repo.retry_failed_job(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found or not in failed status")
        await db.commit()

        return JobResponse.model_validate(job)

    async def get_job_stats(self, tenant_id: Optional[str], db: AsyncSession) -> JobStats:
        return await self.stats.snapshot(db, tenant_id=tenant_id)

    async def list_schedules(self, db: AsyncSession) -> List[ScheduleResponse]:
        schedules = await self.schedules.list_schedules(db)
        return [ScheduleResponse.model_validate(schedule) for schedule in schedules]

    async def upsert_schedule(self, schedule_data: ScheduleCreate, db: AsyncSession) -> ScheduleResponse:
        try:
            parse_cadence(schedule_data.cadence)
        except ScheduleMisconfigured as e:
            raise HTTPException(status_code=422, detail=str(e))

        schedule = await self.schedules.upsert_schedule(db, **schedule_data.model_dump())
        await db.commit()
        return ScheduleResponse.model_validate(schedule)

from typing import List, Optional, Dict, Any, Tuple, Union
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func

from jobqueue.constants.queue_status import JobStatus, JobEvent, LogLevel, TERMINAL_STATUSES
from jobqueue.core.config import settings
from jobqueue.core.exceptions import HandlerTimeout, LeaseMismatch
from jobqueue.models.base_model import utcnow
from jobqueue.models.jobs_model import Job
from jobqueue.repositories.base_repository import AsyncBaseRepository, store_operation
from jobqueue.repositories.job_log_repository import JobLogRepository

# 2**32 * base is already far past any sane cap
MAX_BACKOFF_EXPONENT = 32


class JobRepository(AsyncBaseRepository[Job]):
    """
    Durable job store and the only place job state transitions happen.
    Every transition is a conditional UPDATE guarded on the state the caller
    expects, so concurrent workers and reclaimers cannot overwrite each other.
    Each transition also appends an entry to the job's activity log.
    The caller owns the transaction and commits.
    """

    def __init__(
            self,
            backoff_base: Optional[float] = None,
            backoff_max: Optional[float] = None,
    ):
        super().__init__(Job)
        self.backoff_base = settings.RETRY_BACKOFF_BASE if backoff_base is None else backoff_base
        self.backoff_max = settings.RETRY_BACKOFF_MAX if backoff_max is None else backoff_max
        self.logs = JobLogRepository()

    def backoff(self, attempt_count: int) -> timedelta:
        """Delay before a failed job becomes claimable again: base * 2^attempt, capped."""
        exponent = min(max(attempt_count, 0), MAX_BACKOFF_EXPONENT)
        return timedelta(seconds=min(self.backoff_base * 2 ** exponent, self.backoff_max))

    async def _reload(self, db: AsyncSession, job_id: int) -> Optional[Job]:
        return await db.get(Job, job_id, populate_existing=True)

    @store_operation
    async def enqueue_job(
            self,
            db: AsyncSession,
            *,
            job_type: str,
            payload: Dict[str, Any],
            priority: int = 0,
            max_retries: int = 3,
            tenant_id: Optional[str] = None,
            user_id: Optional[str] = None,
            available_at: Optional[datetime] = None,
            now: Optional[datetime] = None,
    ) -> Job:
        """
        Enqueue a new job. The payload is stored as given.
        """
        now = now or utcnow()

        job_data = {
            "job_type": job_type,
            "payload": payload,
            "priority": priority,
            "status": JobStatus.pending.value,
            "attempt_count": 0,
            "max_retries": max_retries,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "available_at": available_at or now,
            "created_at": now,
            "updated_at": now,
        }

        job = await self.create(db, obj_in=job_data)
        await self.logs.record(
            db,
            job_id=job.id,
            event=JobEvent.enqueued,
            message="Job enqueued",
            details={"job_type": job_type, "priority": priority, "max_retries": max_retries},
            now=now,
        )
        return job

    async def _log_failure(
            self,
            db: AsyncSession,
            job: Job,
            error_message: str,
            prefix: str,
            now: datetime,
            event: Optional[JobEvent] = None,
    ):
        """Log entry for a failed attempt, written after the failure values were applied"""
        details = {"error": error_message, "next_status": job.status}
        if job.status == JobStatus.pending.value:
            level = LogLevel.warn
            event = event or JobEvent.retry_scheduled
            details["available_at"] = job.available_at.isoformat()
        else:
            level = LogLevel.error
            event = event or JobEvent.failed

        await self.logs.record(
            db,
            job_id=job.id,
            event=event,
            level=level,
            attempt=job.attempt_count,
            message=f"{prefix}: {error_message}",
            details=details,
            now=now,
        )

    @store_operation
    async def claim_next_job(
            self,
            db: AsyncSession,
            *,
            worker_id: str,
            lease_duration: Union[float, timedelta],
            now: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Lease the highest-priority claimable job to `worker_id`.

        Claimable means pending with available_at <= now. Ties on priority go to
        the oldest job. Selection and lease happen in a single UPDATE; the inner
        SELECT takes FOR UPDATE SKIP LOCKED on PostgreSQL, and the outer status
        guard makes the statement a compare-and-swap on every backend.
        """
        now = now or utcnow()
        if not isinstance(lease_duration, timedelta):
            lease_duration = timedelta(seconds=lease_duration)

        candidate = (
            select(Job.id)
            .where(
                Job.status == JobStatus.pending.value,
                Job.available_at <= now,
            )
            .order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(Job)
            .where(Job.id == candidate, Job.status == JobStatus.pending.value)
            .values(
                status=JobStatus.leased.value,
                lease_owner=worker_id,
                lease_expires_at=now + lease_duration,
                attempt_count=Job.attempt_count + 1,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        result = await db.execute(stmt)
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        job = await self._reload(db, job_id)
        await self.logs.record(
            db,
            job_id=job_id,
            event=JobEvent.claimed,
            attempt=job.attempt_count,
            message=f"Lease granted to '{worker_id}'",
            details={"worker_id": worker_id, "lease_expires_at": job.lease_expires_at.isoformat()},
            now=now,
        )
        return job

    @store_operation
    async def report_success(
            self,
            db: AsyncSession,
            *,
            job_id: int,
            worker_id: str,
            result: Optional[Dict[str, Any]] = None,
            now: Optional[datetime] = None,
    ) -> Job:
        """
        Mark a leased job completed.

        Raises:
            LeaseMismatch: worker_id does not hold the lease any more
        """
        now = now or utcnow()

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.leased.value,
                Job.lease_owner == worker_id,
            )
            .values(
                status=JobStatus.completed.value,
                result=result,
                last_error=None,
                lease_owner=None,
                lease_expires_at=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        outcome = await db.execute(stmt)
        if outcome.rowcount == 0:
            raise LeaseMismatch(job_id, worker_id)

        job = await self._reload(db, job_id)
        await self.logs.record(
            db,
            job_id=job_id,
            event=JobEvent.completed,
            attempt=job.attempt_count,
            message="Job completed",
            details={"worker_id": worker_id},
            now=now,
        )
        return job

    def _failure_values(self, job: Job, error_message: str, now: datetime) -> Dict[str, Any]:
        """Column values for a failed attempt: retry with backoff, or terminal failure"""
        values = {
            "last_error": error_message,
            "lease_owner": None,
            "lease_expires_at": None,
            "result": None,
            "updated_at": now,
        }

        if job.attempt_count < job.attempt_ceiling:
            values["status"] = JobStatus.pending.value
            values["available_at"] = now + self.backoff(job.attempt_count)
        else:
            values["status"] = JobStatus.failed.value
            values["completed_at"] = now

        return values

    @store_operation
    async def report_failure(
            self,
            db: AsyncSession,
            *,
            job_id: int,
            worker_id: str,
            error: str,
            now: Optional[datetime] = None,
    ) -> Job:
        """
        Record a failed attempt. The job goes back to pending with backoff while
        it has attempts left, otherwise it becomes terminally failed.

        Raises:
            LeaseMismatch: worker_id does not hold the lease any more
        """
        now = now or utcnow()

        job = await db.get(Job, job_id, populate_existing=True, with_for_update=True)
        if job is None or job.status != JobStatus.leased.value or job.lease_owner != worker_id:
            raise LeaseMismatch(job_id, worker_id)

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.leased.value,
                Job.lease_owner == worker_id,
                Job.attempt_count == job.attempt_count,
            )
            .values(**self._failure_values(job, error, now))
            .execution_options(synchronize_session=False)
        )

        outcome = await db.execute(stmt)
        if outcome.rowcount == 0:
            raise LeaseMismatch(job_id, worker_id)

        job = await self._reload(db, job_id)
        await self._log_failure(db, job, error, "Attempt failed", now)
        return job

    @store_operation
    async def reclaim_expired_leases(
            self,
            db: AsyncSession,
            *,
            now: Optional[datetime] = None,
    ) -> int:
        """
        Recover jobs whose lease expired without a report (crashed or hung worker).
        The lapsed attempt counts as a timeout failure: attempt_count is kept,
        so the job is retried with backoff or fails once its budget is spent.

        Returns:
            Number of jobs recovered
        """
        now = now or utcnow()

        stmt = (
            select(Job)
            .where(
                Job.status == JobStatus.leased.value,
                Job.lease_expires_at < now,
            )
            .order_by(Job.lease_expires_at.asc())
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        expired = list((await db.execute(stmt)).scalars().all())

        recovered = 0
        for job in expired:
            message = (
                f"{HandlerTimeout.__name__}: lease held by '{job.lease_owner}' "
                f"expired at {job.lease_expires_at.isoformat()}"
            )
            guarded = (
                update(Job)
                .where(
                    Job.id == job.id,
                    Job.status == JobStatus.leased.value,
                    Job.lease_owner == job.lease_owner,
                    Job.lease_expires_at < now,
                )
                .values(**self._failure_values(job, message, now))
                .execution_options(synchronize_session=False)
            )
            outcome = await db.execute(guarded)
            if outcome.rowcount == 0:
                continue

            recovered += 1
            await self._log_failure(
                db, await self._reload(db, job.id), message, "Lease expired", now, event=JobEvent.reclaimed
            )

        return recovered

    async def list_jobs(
            self,
            db: AsyncSession,
            *,
            status: Optional[str] = None,
            job_type: Optional[str] = None,
            tenant_id: Optional[str] = None,
            skip: int = 0,
            limit: int = 50,
    ) -> List[Job]:
        """
        List jobs, newest first, optionally filtered.
        """
        return await self.get_by_condition(
            db,
            {"status": status, "job_type": job_type, "tenant_id": tenant_id},
            skip=skip,
            limit=limit,
            order_by=[Job.created_at.desc(), Job.id.desc()],
        )

    @store_operation
    async def delete_pending_job(self, db: AsyncSession, job_id: int) -> bool:
        """
        Operator cancellation. Only pending jobs can be deleted; a leased job
        runs to completion or timeout.
        """
        pending = select(Job.id).where(Job.id == job_id, Job.status == JobStatus.pending.value)
        await self.logs.delete_for_jobs(db, pending)

        stmt = (
            delete(Job)
            .where(Job.id == job_id, Job.status == JobStatus.pending.value)
            .execution_options(synchronize_session=False)
        )
        outcome = await db.execute(stmt)
        return outcome.rowcount > 0

    @store_operation
    async def retry_failed_job(
            self,
            db: AsyncSession,
            job_id: int,
            now: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Manually requeue a terminally failed job with a fresh attempt budget.
        """
        now = now or utcnow()

        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.failed.value)
            .values(
                status=JobStatus.pending.value,
                attempt_count=0,
                available_at=now,
                completed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        outcome = await db.execute(stmt)
        if outcome.rowcount == 0:
            return None

        job = await self._reload(db, job_id)
        await self.logs.record(
            db,
            job_id=job_id,
            event=JobEvent.requeued,
            message="Requeued by operator with a fresh attempt budget",
            now=now,
        )
        return job

    @store_operation
    async def cleanup_finished_jobs(
            self,
            db: AsyncSession,
            older_than_days: float = 30,
            now: Optional[datetime] = None,
    ) -> int:
        """
        Retention sweep: permanently delete completed and failed jobs that
        finished more than `older_than_days` ago, along with their activity logs.
        """
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        expired = select(Job.id).where(Job.status.in_(TERMINAL_STATUSES), Job.completed_at < cutoff)
        await self.logs.delete_for_jobs(db, expired)

        stmt = (
            delete(Job)
            .where(Job.status.in_(TERMINAL_STATUSES), Job.completed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        outcome = await db.execute(stmt)
        return outcome.rowcount

    # Read-only queries used by the stats aggregator

    def _scoped(self, stmt, tenant_id: Optional[str]):
        if tenant_id is not None:
            stmt = stmt.where(Job.tenant_id == tenant_id)
        return stmt

    @store_operation
    async def count_by_status(self, db: AsyncSession, tenant_id: Optional[str] = None) -> Dict[str, int]:
        stmt = self._scoped(select(Job.status, func.count(Job.id)).group_by(Job.status), tenant_id)
        result = await db.execute(stmt)
        return {row[0]: row[1] for row in result}

    @store_operation
    async def count_by_type(self, db: AsyncSession, tenant_id: Optional[str] = None) -> Dict[str, int]:
        stmt = self._scoped(select(Job.job_type, func.count(Job.id)).group_by(Job.job_type), tenant_id)
        result = await db.execute(stmt)
        return {row[0]: row[1] for row in result}

    @store_operation
    async def completion_spans(
            self,
            db: AsyncSession,
            since: datetime,
            tenant_id: Optional[str] = None,
    ) -> List[Tuple[datetime, datetime]]:
        """(created_at, completed_at) of jobs completed since `since`"""
        stmt = self._scoped(
            select(Job.created_at, Job.completed_at).where(
                Job.status == JobStatus.completed.value,
                Job.completed_at >= since,
            ),
            tenant_id,
        )
        result = await db.execute(stmt)
        return [(row[0], row[1]) for row in result]

    @store_operation
    async def oldest_pending_created_at(
            self,
            db: AsyncSession,
            tenant_id: Optional[str] = None,
    ) -> Optional[datetime]:
        stmt = self._scoped(
            select(Job.created_at)
            .where(Job.status == JobStatus.pending.value)
            .order_by(Job.created_at.asc())
            .limit(1),
            tenant_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

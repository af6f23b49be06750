"""
Dispatcher (worker pool)
Drives jobs from pending to a terminal state: N independent polling loops
claim jobs and run their handlers, and a separate reclaimer task recovers
leases abandoned by crashed or hung workers.
"""
import asyncio
import socket
import time
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.constants.queue_status import JobStatus
from jobqueue.core.config import settings
from jobqueue.core.exceptions import HandlerTimeout, LeaseMismatch, StoreUnavailable
from jobqueue.core.logger import info, debug, warning, error, critical
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.shutdown import sleep_or_shutdown
from jobqueue.db import database
from jobqueue.models.jobs_model import Job
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.handlers import HandlerRegistry
from jobqueue.workers.job_handlers.base_handler import JobContext

# attempts at landing a report while the store is unreachable
REPORT_ATTEMPTS = 5


def describe_error(e: BaseException) -> str:
    """The last_error text recorded for a failed attempt"""
    return f"{type(e).__name__}: {e}"


class Dispatcher:
    """
    Background worker pool with exponential backoff polling.
    All coordination goes through the job store's lease operations;
    the loops share no job state with each other.
    """

    def __init__(
            self,
            handlers: HandlerRegistry,
            worker_id: Optional[str] = None,
            worker_count: Optional[int] = None,
            poll_interval: Optional[float] = None,
            max_poll_interval: Optional[float] = None,
            backoff_factor: Optional[float] = None,
            lease_duration: Optional[float] = None,
            handler_timeout: Optional[float] = None,
            reclaim_interval: Optional[float] = None,
            drain_timeout: Optional[float] = None,
            job_repository: Optional[JobRepository] = None,
            session_factory: Optional[async_sessionmaker] = None,
            stop_event: Optional[asyncio.Event] = None,
    ):
        """
        Args:
            handlers: job_type -> handler capability map
            worker_id: Prefix for the per-loop lease owner ids
            worker_count: Number of worker loops
            poll_interval: Initial polling interval in seconds
            max_poll_interval: Maximum polling interval in seconds
            backoff_factor: Backoff multiplier when no jobs found
            lease_duration: Seconds a claimed job stays leased
            handler_timeout: Seconds a handler may run, never more than lease_duration
            reclaim_interval: Seconds between expired-lease sweeps
            drain_timeout: Seconds in-flight jobs get to finish on shutdown
        """
        self.handlers = handlers
        self.worker_id = worker_id or settings.WORKER_ID or socket.gethostname()
        self.worker_count = worker_count or settings.WORKER_COUNT
        self.poll_interval = settings.POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_poll_interval = settings.MAX_POLL_INTERVAL if max_poll_interval is None else max_poll_interval
        self.backoff_factor = settings.BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        self.lease_duration = settings.LEASE_DURATION if lease_duration is None else lease_duration
        self.handler_timeout = min(
            settings.HANDLER_TIMEOUT if handler_timeout is None else handler_timeout,
            self.lease_duration,
        )
        self.reclaim_interval = settings.RECLAIM_INTERVAL if reclaim_interval is None else reclaim_interval
        self.drain_timeout = settings.DRAIN_TIMEOUT if drain_timeout is None else drain_timeout
        self.job_repository = job_repository or JobRepository()
        self._session_factory = session_factory

        self.stop_event = stop_event or asyncio.Event()
        self._tasks: List[asyncio.Task] = []

        # Statistics
        self.jobs_processed = 0
        self.jobs_succeeded = 0
        self.jobs_failed = 0
        self.leases_lost = 0
        self.leases_reclaimed = 0

        info(worker_logger, "Dispatcher initialized", context={
            "worker_id": self.worker_id,
            "worker_count": self.worker_count,
            "poll_interval": self.poll_interval,
            "max_poll_interval": self.max_poll_interval,
            "backoff_factor": self.backoff_factor,
            "lease_duration": self.lease_duration,
            "handler_timeout": self.handler_timeout,
            "handler_types": self.handlers.list_types(),
        })

    @property
    def should_shutdown(self) -> bool:
        return self.stop_event.is_set()

    @property
    def worker_ids(self) -> List[str]:
        return [f"{self.worker_id}-{n}" for n in range(1, self.worker_count + 1)]

    async def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = await database.get_session_factory()
        return self._session_factory

    async def start(self):
        """
        Run the worker loops and the reclaimer until stop() is called,
        then let in-flight jobs finish
        """
        info(worker_logger, "Dispatcher starting...", context={
            "worker_ids": self.worker_ids,
        })

        self._tasks = [
            asyncio.create_task(self._worker_loop(worker_id), name=worker_id)
            for worker_id in self.worker_ids
        ]
        self._tasks.append(
            asyncio.create_task(self._reclaimer_loop(), name=f"{self.worker_id}-reclaimer")
        )

        try:
            await self.stop_event.wait()
            await self._drain()
        except Exception as e:
            critical(worker_logger, "Dispatcher crashed with unexpected error", context={
                "worker_id": self.worker_id,
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise
        finally:
            for task in self._tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._shutdown()

    async def stop(self):
        """
        Stop the dispatcher gracefully
        Loops stop claiming; jobs already running finish
        """
        warning(worker_logger, "Stop requested", context={
            "worker_id": self.worker_id
        })
        self.stop_event.set()

    async def _drain(self):
        running = [task for task in self._tasks if not task.done()]
        if not running:
            return

        info(worker_logger, f"Waiting for {len(running)} loops to finish in-flight jobs", context={
            "drain_timeout": self.drain_timeout,
        })
        _, pending = await asyncio.wait(running, timeout=self.drain_timeout)

        if pending:
            warning(worker_logger, f"Forcefully cancelling {len(pending)} loops after drain timeout")
            for task in pending:
                task.cancel()

    async def _worker_loop(self, worker_id: str):
        """
        Claim -> execute -> report, sleeping with exponential backoff while
        the queue is empty or the store is unreachable
        """
        current_poll_interval = self.poll_interval
        debug(worker_logger, "Worker loop started", context={"worker_id": worker_id})

        while not self.should_shutdown:
            try:
                processed = await self.process_next(worker_id)
            except StoreUnavailable as e:
                warning(worker_logger, "Job store unavailable, backing off", context={
                    "worker_id": worker_id,
                    "error": str(e),
                    "retry_in": round(current_poll_interval, 2),
                })
                processed = False
            except Exception as e:
                error(worker_logger, "Unexpected error in worker loop", context={
                    "worker_id": worker_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                })
                processed = False

            if processed:
                # Reset poll interval since we've found a job
                current_poll_interval = self.poll_interval
                continue

            if await sleep_or_shutdown(self.stop_event, current_poll_interval):
                break

            current_poll_interval = min(
                current_poll_interval * self.backoff_factor,
                self.max_poll_interval
            )

        debug(worker_logger, "Worker loop stopped", context={"worker_id": worker_id})

    async def process_next(self, worker_id: str) -> bool:
        """
        Claim one job and run it to a reported outcome.

        Returns:
            True if a job was claimed, False if nothing was claimable
        """
        session_factory = await self._sessions()
        async with session_factory() as db:
            job = await self.job_repository.claim_next_job(
                db,
                worker_id=worker_id,
                lease_duration=self.lease_duration,
            )
            await db.commit()

        if job is None:
            return False

        info(worker_logger, "Job claimed", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "priority": job.priority,
            "attempt": job.attempt_count,
            "max_retries": job.max_retries,
            "worker_id": worker_id,
        })

        await self._execute(job, worker_id)
        return True

    async def _execute(self, job: Job, worker_id: str):
        start_time = time.monotonic()
        context = JobContext.from_job(job)

        try:
            handler = self.handlers.get(job.job_type)
            result = await asyncio.wait_for(
                handler.execute(job.payload, context),
                timeout=self.handler_timeout,
            )
        except asyncio.TimeoutError:
            timeout = HandlerTimeout(f"handler did not finish within {self.handler_timeout}s")
            await self._handle_failure(job, worker_id, describe_error(timeout), start_time)
        except Exception as e:
            await self._handle_failure(job, worker_id, describe_error(e), start_time)
        else:
            await self._handle_success(job, worker_id, result, start_time)
        finally:
            self.jobs_processed += 1

    async def _handle_success(self, job: Job, worker_id: str, result, start_time: float):
        async def report(db):
            return await self.job_repository.report_success(
                db, job_id=job.id, worker_id=worker_id, result=result
            )

        updated = await self._report(job, worker_id, report)
        if updated is None:
            return

        self.jobs_succeeded += 1
        info(worker_logger, "Job completed successfully", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "duration_seconds": round(time.monotonic() - start_time, 2),
            "attempts": updated.attempt_count,
            "worker_id": worker_id,
        })

    async def _handle_failure(self, job: Job, worker_id: str, message: str, start_time: float):
        self.jobs_failed += 1

        async def report(db):
            return await self.job_repository.report_failure(
                db, job_id=job.id, worker_id=worker_id, error=message
            )

        updated = await self._report(job, worker_id, report)
        if updated is None:
            return

        log = warning if updated.status == JobStatus.pending.value else error
        log(worker_logger, "Job processing failed", context={
            "job_id": job.id,
            "job_type": job.job_type,
            "error": message,
            "duration_seconds": round(time.monotonic() - start_time, 2),
            "attempts": updated.attempt_count,
            "max_retries": updated.max_retries,
            "next_status": updated.status,
            "available_at": updated.available_at,
            "worker_id": worker_id,
        })

    async def _report(self, job: Job, worker_id: str, report: Callable[..., Awaitable[Job]]) -> Optional[Job]:
        """
        Land an outcome in the store, retrying while the store is unreachable.
        A lost lease means another party owns the job now: drop the outcome.
        If the store stays down the lease expires and the reclaimer redelivers.
        """
        delay = self.poll_interval
        session_factory = await self._sessions()

        for attempt in range(1, REPORT_ATTEMPTS + 1):
            try:
                async with session_factory() as db:
                    updated = await report(db)
                    await db.commit()
                return updated
            except LeaseMismatch as e:
                self.leases_lost += 1
                warning(worker_logger, "Lease lost, dropping job outcome", context={
                    "job_id": job.id,
                    "worker_id": worker_id,
                    "error": str(e),
                })
                return None
            except StoreUnavailable as e:
                if attempt == REPORT_ATTEMPTS:
                    error(worker_logger, "Could not report job outcome, leaving it to the reclaimer", context={
                        "job_id": job.id,
                        "worker_id": worker_id,
                        "error": str(e),
                    })
                    return None
                warning(worker_logger, "Job store unavailable while reporting, retrying", context={
                    "job_id": job.id,
                    "attempt": attempt,
                    "retry_in": round(delay, 2),
                })
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_poll_interval)

    async def reclaim_once(self) -> int:
        """Run one expired-lease sweep; returns the number of jobs recovered"""
        session_factory = await self._sessions()
        async with session_factory() as db:
            count = await self.job_repository.reclaim_expired_leases(db)
            await db.commit()

        if count:
            self.leases_reclaimed += count
            warning(worker_logger, f"Reclaimed {count} expired leases")
        return count

    async def _reclaimer_loop(self):
        info(worker_logger, "Lease reclaimer started", context={"reclaim_interval": self.reclaim_interval})

        while not self.should_shutdown:
            try:
                await self.reclaim_once()
            except StoreUnavailable as e:
                warning(worker_logger, "Job store unavailable, reclaim skipped", context={"error": str(e)})
            except Exception as e:
                error(worker_logger, "Lease reclaim failed", context={
                    "error": str(e),
                    "error_type": type(e).__name__,
                })

            if await sleep_or_shutdown(self.stop_event, self.reclaim_interval):
                break

    def _shutdown(self):
        """Log final statistics"""
        info(worker_logger, "Dispatcher statistics", context={
            "worker_id": self.worker_id,
            "jobs_processed": self.jobs_processed,
            "jobs_succeeded": self.jobs_succeeded,
            "jobs_failed": self.jobs_failed,
            "leases_lost": self.leases_lost,
            "leases_reclaimed": self.leases_reclaimed,
            "success_rate": f"{(self.jobs_succeeded / self.jobs_processed * 100) if self.jobs_processed > 0 else 0:.2f}%"
        })

        info(worker_logger, "Dispatcher stopped gracefully", context={
            "worker_id": self.worker_id
        })

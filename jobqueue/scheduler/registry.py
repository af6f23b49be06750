"""
Schedule Registry
Turns wall-clock time into enqueued jobs, once per due period, across restarts
"""
import asyncio
import copy
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.core.config import settings
from jobqueue.core.exceptions import ScheduleMisconfigured, StoreUnavailable
from jobqueue.core.logger import info, debug, warning, error
from jobqueue.core.setup_logger import scheduler_logger
from jobqueue.core.shutdown import sleep_or_shutdown
from jobqueue.db import database
from jobqueue.models.base_model import utcnow
from jobqueue.models.schedule_model import Schedule
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.repositories.schedule_repository import ScheduleRepository
from jobqueue.scheduler.cadence import parse_cadence
from jobqueue.scheduler.defaults import default_schedules
from jobqueue.schemas.schedule_schemas import ScheduleCreate


def due_instant(schedule: Schedule, now: datetime) -> Optional[datetime]:
    """
    The fire instant a tick at `now` should record for this schedule, or None.
    A schedule that never fired counts periods from its creation.

    Raises:
        ScheduleMisconfigured: cadence or job template is unusable
    """
    cadence = parse_cadence(schedule.cadence)

    if not schedule.job_type:
        raise ScheduleMisconfigured(f"Schedule '{schedule.name}' has no job_type")
    if not isinstance(schedule.payload_template, dict):
        raise ScheduleMisconfigured(f"Schedule '{schedule.name}' payload_template must be an object")

    baseline = schedule.last_fired_at or schedule.created_at
    return cadence.latest_fire_between(baseline, now)


class ScheduleRegistry:

    def __init__(
            self,
            session_factory: Optional[async_sessionmaker] = None,
            job_repository: Optional[JobRepository] = None,
            schedule_repository: Optional[ScheduleRepository] = None,
            tick_interval: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.job_repository = job_repository or JobRepository()
        self.schedule_repository = schedule_repository or ScheduleRepository()
        self.tick_interval = settings.SCHEDULER_TICK_INTERVAL if tick_interval is None else tick_interval

    async def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = await database.get_session_factory()
        return self._session_factory

    async def register(self, definition: ScheduleCreate, keep_enabled: bool = False) -> Schedule:
        """
        Upsert a schedule definition.
        With keep_enabled an existing schedule keeps the switch an operator last set.
        """
        fields = definition.model_dump()
        if keep_enabled:
            fields["enabled"] = None

        session_factory = await self._sessions()
        async with session_factory() as db:
            schedule = await self.schedule_repository.upsert_schedule(db, **fields)
            await db.commit()

        info(scheduler_logger, "Schedule registered", context={
            "name": schedule.name,
            "cadence": schedule.cadence,
            "job_type": schedule.job_type,
            "enabled": schedule.enabled,
        })
        return schedule

    async def register_defaults(self) -> List[Schedule]:
        return [await self.register(definition, keep_enabled=True) for definition in default_schedules()]

    async def _fire(self, db: AsyncSession, schedule: Schedule, fire_at: datetime, now: datetime) -> int:
        job = await self.job_repository.enqueue_job(
            db,
            job_type=schedule.job_type,
            payload=copy.deepcopy(schedule.payload_template),
            priority=schedule.priority,
            max_retries=schedule.max_retries,
            now=now,
        )
        # the fire instant, not `now`: a late tick must not drift the schedule
        await self.schedule_repository.mark_fired(db, schedule, fire_at)
        return job.id

    async def tick(self, now: Optional[datetime] = None) -> List[int]:
        """
        Enqueue one job for every enabled schedule that is due at `now`.
        All enqueues and last_fired_at writes of a tick commit together.

        Returns:
            IDs of the jobs enqueued
        """
        now = now or utcnow()
        job_ids = []

        session_factory = await self._sessions()
        async with session_factory() as db:
            for schedule in await self.schedule_repository.get_due_candidates(db):
                try:
                    fire_at = due_instant(schedule, now)
                except ScheduleMisconfigured as e:
                    error(scheduler_logger, "Schedule misconfigured, disabling", context={
                        "name": schedule.name,
                        "cadence": schedule.cadence,
                        "error": str(e),
                    })
                    await self.schedule_repository.disable(db, schedule, str(e))
                    continue

                if fire_at is None:
                    debug(scheduler_logger, "Schedule not due", context={"name": schedule.name})
                    continue

                job_id = await self._fire(db, schedule, fire_at, now)
                job_ids.append(job_id)

                info(scheduler_logger, "Schedule fired", context={
                    "name": schedule.name,
                    "job_id": job_id,
                    "job_type": schedule.job_type,
                    "fire_at": fire_at.isoformat(),
                })

            await db.commit()

        return job_ids

    async def run(self, stop_event: asyncio.Event):
        """Tick every tick_interval seconds until stop_event is set"""
        info(scheduler_logger, "Scheduler started", context={"tick_interval": self.tick_interval})

        while not stop_event.is_set():
            try:
                await self.tick()
            except StoreUnavailable as e:
                warning(scheduler_logger, "Job store unavailable, retrying next tick", context={
                    "error": str(e),
                })
            except Exception as e:
                error(scheduler_logger, "Scheduler tick failed", context={
                    "error": str(e),
                    "error_type": type(e).__name__,
                })

            if await sleep_or_shutdown(stop_event, self.tick_interval):
                break

        info(scheduler_logger, "Scheduler stopped")

from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from jobqueue.models.base_model import utcnow
from jobqueue.models.schedule_model import Schedule
from jobqueue.repositories.base_repository import AsyncBaseRepository, store_operation


class ScheduleRepository(AsyncBaseRepository[Schedule]):
    def __init__(self):
        super().__init__(Schedule)

    @store_operation
    async def get_by_name(self, db: AsyncSession, name: str) -> Optional[Schedule]:
        result = await db.execute(select(Schedule).where(Schedule.name == name))
        return result.scalar_one_or_none()

    @store_operation
    async def upsert_schedule(
            self,
            db: AsyncSession,
            *,
            name: str,
            cadence: str,
            job_type: str,
            payload_template: Dict[str, Any],
            priority: int = 0,
            max_retries: int = 3,
            enabled: Optional[bool] = True,
    ) -> Schedule:
        """
        Create a schedule or update its definition in place.
        last_fired_at survives the update so a redeploy does not re-fire it.

        An explicit `enabled` always wins. With enabled=None an existing schedule
        keeps its switch, unless its definition changed and it gets another chance.
        """
        schedule = await self.get_by_name(db, name)
        definition = {
            "cadence": cadence,
            "job_type": job_type,
            "payload_template": payload_template,
            "priority": priority,
            "max_retries": max_retries,
        }

        if schedule is None:
            return await self.create(db, obj_in={"name": name, "enabled": enabled is not False, **definition})

        changed = any(getattr(schedule, key) != value for key, value in definition.items())
        for key, value in definition.items():
            setattr(schedule, key, value)
        if enabled is None:
            # a corrected definition gets another chance
            enabled = True if changed else schedule.enabled
        schedule.enabled = enabled
        if enabled:
            schedule.last_error = None
        schedule.updated_at = utcnow()

        await db.flush()
        return schedule

    async def list_schedules(self, db: AsyncSession, enabled: Optional[bool] = None) -> List[Schedule]:
        return await self.get_by_condition(db, {"enabled": enabled}, order_by=[Schedule.name])

    @store_operation
    async def get_due_candidates(self, db: AsyncSession) -> List[Schedule]:
        """
        Enabled schedules, row-locked so two scheduler processes never evaluate
        the same schedule at once.
        """
        stmt = (
            select(Schedule)
            .where(Schedule.enabled.is_(True))
            .order_by(Schedule.id)
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @store_operation
    async def mark_fired(self, db: AsyncSession, schedule: Schedule, fired_at: datetime) -> Schedule:
        schedule.last_fired_at = fired_at
        schedule.updated_at = utcnow()
        await db.flush()
        return schedule

    @store_operation
    async def disable(self, db: AsyncSession, schedule: Schedule, reason: str) -> Schedule:
        schedule.enabled = False
        schedule.last_error = reason
        schedule.updated_at = utcnow()
        await db.flush()
        return schedule

from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.v1.endpoints.jobs import get_service
from jobqueue.db import get_db
from jobqueue.schemas.schedule_schemas import ScheduleCreate, ScheduleResponse
from jobqueue.services.job_service import JobService

router = APIRouter()


@router.get("/schedules", response_model=List[ScheduleResponse])
async def list_schedules(
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.list_schedules(db)


@router.put("/schedules", response_model=ScheduleResponse)
async def upsert_schedule(
        schedule_data: ScheduleCreate,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.upsert_schedule(schedule_data, db)

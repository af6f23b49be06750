from fastapi import APIRouter

from jobqueue.api.v1.endpoints import jobs, schedules

router = APIRouter()

router.include_router(jobs.router, tags=["jobs"])
router.include_router(schedules.router, tags=["schedules"])

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants.queue_status import JobStatus
from jobqueue.db import get_db
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.schemas.job_schemas import JobCreate, JobResponse, JobLogResponse, JobStats
from jobqueue.services.job_service import JobService

router = APIRouter()

repo = JobRepository()
service = JobService(repo)


def get_service() -> JobService:
    return service


@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(
        job_data: JobCreate,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.create_job(job_data, db)


@router.get("/jobs", response_model=List[JobResponse])
async def list_jobs(
        status: Optional[JobStatus] = Query(None, description="Filter by job status"),
        job_type: Optional[str] = Query(None, description="Filter by job type"),
        tenant_id: Optional[str] = Query(None, description="Filter by tenant"),
        skip: int = Query(0, ge=0, description="Number of jobs to skip"),
        limit: int = Query(50, ge=1, le=1000, description="Maximum jobs to return"),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.list_jobs(status, job_type, tenant_id, skip, limit, db)


@router.get("/jobs/stats/overview", response_model=JobStats)
async def get_job_stats(
        tenant_id: Optional[str] = Query(None, description="Restrict stats to one tenant"),
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_job_stats(tenant_id, db)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
        job_id: int,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_job(job_id, db)


@router.get("/jobs/{job_id}/logs", response_model=List[JobLogResponse])
async def get_job_logs(
        job_id: int,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.get_job_logs(job_id, db)


@router.delete("/jobs/{job_id}")
async def cancel_job(
        job_id: int,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service)
):
    return await svc.cancel_job(job_id, db)


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(
        job_id: int,
        db: AsyncSession = Depends(get_db),
        svc: JobService = Depends(get_service),
):
    return await svc.retry_job(job_id, db)

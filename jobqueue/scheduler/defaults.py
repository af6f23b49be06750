"""
Standard recurring jobs: the nightly retention sweep and the six-hourly analytics rollups.
The queue maintains itself through its own jobs. Cleanup targets and analysis types
other than old_jobs and queue_stats are skipped until the embedding application
registers a sweeper or analyzer for them.
"""
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants.job_types import JobTypes
from jobqueue.models.jobs_model import Job
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.schemas.schedule_schemas import ScheduleCreate

DAILY_CLEANUP_CADENCE = "0 2 * * *"
ANALYTICS_CADENCE = "0 */6 * * *"

# (cleanup_type, days_to_keep)
STANDARD_CLEANUP_TARGETS = [
    ("old_jobs", 30),
    ("expired_cache", 7),
    ("expired_invites", 7),
]

STANDARD_ANALYSIS_TYPES = [
    "queue_stats",
    "popular_ingredients",
    "cuisine_preferences",
    "user_engagement",
]
ANALYTICS_DATE_RANGE = "7d"

CLEANUP_PRIORITY = 1
CLEANUP_MAX_RETRIES = 3
ANALYTICS_PRIORITY = 2
ANALYTICS_MAX_RETRIES = 2


def cleanup_payload(cleanup_type: str, days_to_keep: int) -> dict:
    return {"cleanup_type": cleanup_type, "days_to_keep": days_to_keep}


def default_schedules() -> List[ScheduleCreate]:
    schedules = [
        ScheduleCreate(
            name=f"cleanup-{cleanup_type.replace('_', '-')}",
            cadence=DAILY_CLEANUP_CADENCE,
            job_type=JobTypes.cleanup.value,
            payload_template=cleanup_payload(cleanup_type, days_to_keep),
            priority=CLEANUP_PRIORITY,
            max_retries=CLEANUP_MAX_RETRIES,
        )
        for cleanup_type, days_to_keep in STANDARD_CLEANUP_TARGETS
    ]

    schedules.extend(
        ScheduleCreate(
            name=f"analytics-{analysis_type.replace('_', '-')}",
            cadence=ANALYTICS_CADENCE,
            job_type=JobTypes.analytics.value,
            payload_template={"analysis_type": analysis_type, "date_range": ANALYTICS_DATE_RANGE},
            priority=ANALYTICS_PRIORITY,
            max_retries=ANALYTICS_MAX_RETRIES,
        )
        for analysis_type in STANDARD_ANALYSIS_TYPES
    )

    return schedules


async def enqueue_cleanup_jobs(db: AsyncSession, job_repository: JobRepository) -> List[Job]:
    """Enqueue the standard cleanup set right now, outside of any schedule"""
    jobs = []
    for cleanup_type, days_to_keep in STANDARD_CLEANUP_TARGETS:
        job = await job_repository.enqueue_job(
            db,
            job_type=JobTypes.cleanup.value,
            payload=cleanup_payload(cleanup_type, days_to_keep),
            priority=CLEANUP_PRIORITY,
            max_retries=CLEANUP_MAX_RETRIES,
        )
        jobs.append(job)
    return jobs

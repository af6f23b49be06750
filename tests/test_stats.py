from datetime import timedelta

from jobqueue.services.stats_service import StatsService
from tests.conftest import T0


async def seed(repo, db):
    """One job completed in 10s and one pending job for tenant a, one failed job for tenant b."""
    await repo.enqueue_job(db, job_type="generation", payload={}, tenant_id="a", now=T0)
    job = await repo.claim_next_job(db, worker_id="w", lease_duration=60, now=T0)
    await repo.report_success(db, job_id=job.id, worker_id="w", now=T0 + timedelta(seconds=10))

    await repo.enqueue_job(db, job_type="cleanup", payload={}, tenant_id="b", max_retries=1, now=T0)
    job = await repo.claim_next_job(db, worker_id="w", lease_duration=60, now=T0)
    await repo.report_failure(db, job_id=job.id, worker_id="w", error="boom", now=T0 + timedelta(seconds=2))

    await repo.enqueue_job(db, job_type="generation", payload={}, tenant_id="a", now=T0 + timedelta(seconds=5))


async def test_snapshot_counts_by_status_and_type(repo, db):
    await seed(repo, db)

    stats = await StatsService(repo).snapshot(db, window=timedelta(hours=1), now=T0 + timedelta(seconds=65))

    assert stats.counts == {"pending": 1, "leased": 0, "completed": 1, "failed": 1}
    assert stats.total == 3
    assert stats.type_counts == {"generation": 2, "cleanup": 1}
    assert stats.window_hours == 1


async def test_snapshot_timings(repo, db):
    await seed(repo, db)

    stats = await StatsService(repo).snapshot(db, window=timedelta(hours=1), now=T0 + timedelta(seconds=65))

    assert stats.completed_in_window == 1
    assert stats.avg_completion_seconds == 10.0
    assert stats.oldest_pending_age_seconds == 60.0


async def test_completions_outside_window_are_ignored(repo, db):
    await seed(repo, db)

    stats = await StatsService(repo).snapshot(db, window=timedelta(hours=1), now=T0 + timedelta(hours=3))

    assert stats.completed_in_window == 0
    assert stats.avg_completion_seconds is None
    assert stats.counts["completed"] == 1


async def test_snapshot_scoped_to_tenant(repo, db):
    await seed(repo, db)

    stats = await StatsService(repo).snapshot(db, tenant_id="b", window=timedelta(hours=1), now=T0 + timedelta(minutes=1))

    assert stats.tenant_id == "b"
    assert stats.total == 1
    assert stats.counts["failed"] == 1
    assert stats.oldest_pending_age_seconds is None
    assert stats.avg_completion_seconds is None


async def test_snapshot_of_empty_store(repo, db):
    stats = await StatsService(repo).snapshot(db, now=T0)

    assert stats.total == 0
    assert set(stats.counts.values()) == {0}
    assert stats.type_counts == {}

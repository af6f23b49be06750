from datetime import timedelta

import pytest

from jobqueue.core.exceptions import HandlerError
from jobqueue.models.base_model import utcnow
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.handlers import HandlerRegistry, default_registry
from jobqueue.workers.job_handlers import AnalyticsHandler, CleanupHandler, FunctionHandler, JobContext
from jobqueue.workers.job_handlers.analytics_handler import parse_date_range


def context(job_type="cleanup") -> JobContext:
    return JobContext(job_id=1, job_type=job_type, attempt=1, max_retries=3)


async def finished_job(session_factory, finished_at):
    repo = JobRepository()
    async with session_factory() as db:
        await repo.enqueue_job(db, job_type="generation", payload={}, now=finished_at)
        job = await repo.claim_next_job(db, worker_id="w", lease_duration=60, now=finished_at)
        await repo.report_success(db, job_id=job.id, worker_id="w", now=finished_at)
        await db.commit()
    return job.id


# Registry

def test_default_registry_has_maintenance_handlers():
    registry = default_registry()

    assert registry.list_types() == ["analytics", "cleanup"]
    assert "cleanup" in registry
    assert "generation" not in registry


def test_register_rejects_non_handlers():
    with pytest.raises(TypeError):
        HandlerRegistry().register(object())


async def test_register_function_wraps_coroutine():
    async def generate(payload, ctx):
        return {"text": payload["prompt"].upper(), "job": ctx.job_id}

    registry = HandlerRegistry()
    registry.register_function("generation", generate)
    handler = registry.get("generation")

    assert isinstance(handler, FunctionHandler)
    assert await handler.execute({"prompt": "hi"}, context("generation")) == {"text": "HI", "job": 1}


# Cleanup

async def test_cleanup_old_jobs_sweeps_finished_jobs(session_factory):
    old_id = await finished_job(session_factory, utcnow() - timedelta(days=45))
    recent_id = await finished_job(session_factory, utcnow() - timedelta(days=1))
    handler = CleanupHandler(session_factory=session_factory)

    result = await handler.execute({"cleanup_type": "old_jobs", "days_to_keep": 30}, context())

    assert result == {"status": "cleaned", "cleanup_type": "old_jobs", "days_to_keep": 30, "removed": 1}
    async with session_factory() as db:
        assert await JobRepository().get(db, old_id) is None
        assert await JobRepository().get(db, recent_id) is not None


async def test_cleanup_unknown_type_is_skipped():
    handler = CleanupHandler()

    result = await handler.execute({"cleanup_type": "expired_cache", "days_to_keep": 7}, context())

    assert result == {"status": "skipped", "cleanup_type": "expired_cache"}


async def test_cleanup_uses_registered_sweeper():
    swept = []

    async def sweep_cache(days_to_keep):
        swept.append(days_to_keep)
        return 12

    handler = CleanupHandler()
    handler.register_sweeper("expired_cache", sweep_cache)

    result = await handler.execute({"cleanup_type": "expired_cache", "days_to_keep": 7}, context())

    assert result["removed"] == 12
    assert swept == [7]


@pytest.mark.parametrize("payload", [
    {},
    {"cleanup_type": "old_jobs", "days_to_keep": -1},
    {"cleanup_type": "old_jobs", "days_to_keep": "thirty"},
])
async def test_cleanup_rejects_bad_payload(payload):
    with pytest.raises(HandlerError):
        await CleanupHandler().execute(payload, context())


# Analytics

@pytest.mark.parametrize("value, expected", [
    ("30m", timedelta(minutes=30)),
    ("24h", timedelta(hours=24)),
    ("7d", timedelta(days=7)),
])
def test_parse_date_range(value, expected):
    assert parse_date_range(value) == expected


@pytest.mark.parametrize("value", ["", "7", "7w", "d7", "-1d"])
def test_parse_date_range_rejects_garbage(value):
    with pytest.raises(HandlerError):
        parse_date_range(value)


async def test_queue_stats_report(session_factory):
    await finished_job(session_factory, utcnow() - timedelta(hours=1))
    handler = AnalyticsHandler(session_factory=session_factory)

    result = await handler.execute({"analysis_type": "queue_stats", "date_range": "7d"}, context("analytics"))

    assert result["status"] == "processed"
    assert result["analysis_type"] == "queue_stats"
    assert result["report"]["counts"]["completed"] == 1
    assert result["report"]["completed_in_window"] == 1
    assert result["report"]["window_hours"] == 168


async def test_analytics_unknown_type_is_skipped():
    result = await AnalyticsHandler().execute({"analysis_type": "user_activity"}, context("analytics"))

    assert result == {"status": "skipped", "analysis_type": "user_activity"}


async def test_analytics_requires_analysis_type():
    with pytest.raises(HandlerError):
        await AnalyticsHandler().execute({"date_range": "7d"}, context("analytics"))


async def test_product_analytics_run_once_an_analyzer_is_registered():
    handler = AnalyticsHandler()
    payload = {"analysis_type": "popular_ingredients", "date_range": "7d"}

    assert (await handler.execute(payload, context("analytics")))["status"] == "skipped"

    async def popular_ingredients(window, payload):
        return {"popular_ingredients": ["garlic", "onion"], "days": window.days}

    handler.register_analyzer("popular_ingredients", popular_ingredients)
    result = await handler.execute(payload, context("analytics"))

    assert result["status"] == "processed"
    assert result["report"] == {"popular_ingredients": ["garlic", "onion"], "days": 7}

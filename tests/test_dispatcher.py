import asyncio
from datetime import timedelta

import pytest

from jobqueue.constants.queue_status import JobStatus
from jobqueue.core.exceptions import HandlerError, StoreUnavailable
from jobqueue.models.base_model import utcnow
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.workers.dispatcher import REPORT_ATTEMPTS, Dispatcher
from jobqueue.workers.handlers import HandlerRegistry


@pytest.fixture
def instant_repo() -> JobRepository:
    # failed jobs become claimable again immediately
    return JobRepository(backoff_base=0, backoff_max=0)


@pytest.fixture
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


def make_dispatcher(handlers, repo, session_factory, **kwargs) -> Dispatcher:
    options = dict(
        worker_id="test",
        worker_count=1,
        poll_interval=0.01,
        max_poll_interval=0.05,
        backoff_factor=2,
        lease_duration=30,
        handler_timeout=5,
        reclaim_interval=0.05,
        drain_timeout=5,
    )
    options.update(kwargs)
    return Dispatcher(handlers, job_repository=repo, session_factory=session_factory, **options)


async def submit(session_factory, repo, job_type, payload=None, **kwargs):
    async with session_factory() as db:
        job = await repo.enqueue_job(db, job_type=job_type, payload=payload or {}, **kwargs)
        await db.commit()
    return job.id


async def load(session_factory, repo, job_id):
    async with session_factory() as db:
        return await repo.get(db, job_id)


async def test_failing_job_is_retried_until_it_succeeds(handlers, instant_repo, session_factory):
    calls = []

    async def flaky(payload, context):
        calls.append(context.attempt)
        if len(calls) < 3:
            raise RuntimeError(f"failure {len(calls)}")
        return {"echo": payload["value"]}

    handlers.register_function("generation", flaky)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(session_factory, instant_repo, "generation", {"value": 42}, max_retries=3)

    for _ in range(3):
        assert await dispatcher.process_next("test-1") is True

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.completed.value
    assert job.attempt_count == 3
    assert job.result == {"echo": 42}
    assert job.last_error is None
    assert calls == [1, 2, 3]
    assert dispatcher.jobs_failed == 2
    assert dispatcher.jobs_succeeded == 1


async def test_job_fails_terminally_once_attempts_are_spent(handlers, instant_repo, session_factory):
    async def broken(payload, context):
        raise RuntimeError("boom")

    handlers.register_function("generation", broken)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(session_factory, instant_repo, "generation", max_retries=2)

    assert await dispatcher.process_next("test-1") is True
    assert await dispatcher.process_next("test-1") is True
    assert await dispatcher.process_next("test-1") is False

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.failed.value
    assert job.attempt_count == 2
    assert job.last_error == "RuntimeError: boom"


async def test_slow_handler_times_out(handlers, instant_repo, session_factory):
    async def slow(payload, context):
        await asyncio.sleep(5)

    handlers.register_function("generation", slow)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory, handler_timeout=0.05)
    job_id = await submit(session_factory, instant_repo, "generation", max_retries=1)

    await dispatcher.process_next("test-1")

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.failed.value
    assert job.last_error.startswith("HandlerTimeout")


def test_handler_timeout_never_exceeds_lease(handlers, instant_repo):
    dispatcher = Dispatcher(handlers, lease_duration=10, handler_timeout=60, job_repository=instant_repo)

    assert dispatcher.handler_timeout == 10


async def test_unknown_job_type_is_recorded_as_failure(handlers, instant_repo, session_factory):
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(session_factory, instant_repo, "mystery", max_retries=1)

    await dispatcher.process_next("test-1")

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.failed.value
    assert "No handler registered for job_type: 'mystery'" in job.last_error


async def test_handler_receives_payload_and_context(handlers, instant_repo, session_factory):
    seen = {}

    async def capture(payload, context):
        seen["payload"] = payload
        seen["context"] = context

    handlers.register_function("generation", capture)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(
        session_factory, instant_repo, "generation", {"prompt": "hello"}, tenant_id="t1", user_id="u1"
    )

    await dispatcher.process_next("test-1")

    assert seen["payload"] == {"prompt": "hello"}
    assert seen["context"].job_id == job_id
    assert seen["context"].attempt == 1
    assert seen["context"].tenant_id == "t1"
    assert seen["context"].user_id == "u1"


async def test_reclaim_once_recovers_abandoned_lease(handlers, instant_repo, session_factory):
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    past = utcnow() - timedelta(minutes=10)
    job_id = await submit(session_factory, instant_repo, "generation", max_retries=3, now=past)

    async with session_factory() as db:
        await instant_repo.claim_next_job(db, worker_id="gone", lease_duration=1, now=past)
        await db.commit()

    assert await dispatcher.reclaim_once() == 1
    assert dispatcher.leases_reclaimed == 1

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.pending.value
    assert job.attempt_count == 1


async def test_start_processes_jobs_until_stopped(handlers, instant_repo, session_factory):
    async def ok(payload, context):
        return {"n": payload["n"]}

    handlers.register_function("generation", ok)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory, worker_count=2)
    job_ids = [await submit(session_factory, instant_repo, "generation", {"n": n}) for n in range(3)]

    runner = asyncio.create_task(dispatcher.start())
    for _ in range(200):
        if dispatcher.jobs_succeeded == 3:
            break
        await asyncio.sleep(0.02)

    await dispatcher.stop()
    await asyncio.wait_for(runner, timeout=5)

    assert dispatcher.jobs_succeeded == 3
    for job_id in job_ids:
        job = await load(session_factory, instant_repo, job_id)
        assert job.status == JobStatus.completed.value


async def test_stop_lets_in_flight_job_finish(handlers, instant_repo, session_factory):
    started = asyncio.Event()

    async def slow(payload, context):
        started.set()
        await asyncio.sleep(0.2)
        return {"finished": True}

    handlers.register_function("generation", slow)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(session_factory, instant_repo, "generation")

    runner = asyncio.create_task(dispatcher.start())
    await asyncio.wait_for(started.wait(), timeout=5)
    await dispatcher.stop()
    await asyncio.wait_for(runner, timeout=5)

    job = await load(session_factory, instant_repo, job_id)
    assert job.status == JobStatus.completed.value
    assert job.result == {"finished": True}


async def test_worker_ids_are_distinct_per_loop(handlers, instant_repo):
    dispatcher = Dispatcher(handlers, worker_id="host", worker_count=3, job_repository=instant_repo)

    assert dispatcher.worker_ids == ["host-1", "host-2", "host-3"]


def test_registry_rejects_unknown_types():
    registry = HandlerRegistry()

    with pytest.raises(HandlerError):
        registry.get("generation")


# Store outages and lost leases

class FlakyStore(JobRepository):
    """Refuses the first `outages` calls of each store operation it patches."""

    def __init__(self, claim_outages=0, report_outages=0):
        super().__init__(backoff_base=0, backoff_max=0)
        self.claim_outages = claim_outages
        self.report_outages = report_outages

    async def claim_next_job(self, db, **kwargs):
        if self.claim_outages:
            self.claim_outages -= 1
            raise StoreUnavailable("connection refused")
        return await super().claim_next_job(db, **kwargs)

    async def report_success(self, db, **kwargs):
        if self.report_outages:
            self.report_outages -= 1
            raise StoreUnavailable("connection refused")
        return await super().report_success(db, **kwargs)


async def test_claim_outage_propagates_without_touching_jobs(handlers, session_factory):
    store = FlakyStore(claim_outages=1)
    dispatcher = make_dispatcher(handlers, store, session_factory)
    job_id = await submit(session_factory, store, "generation")

    with pytest.raises(StoreUnavailable):
        await dispatcher.process_next("test-1")

    job = await load(session_factory, store, job_id)
    assert job.status == JobStatus.pending.value
    assert job.attempt_count == 0
    assert dispatcher.jobs_failed == 0


async def test_worker_loop_backs_off_through_store_outage(handlers, session_factory):
    async def ok(payload, context):
        return {"ok": True}

    handlers.register_function("generation", ok)
    store = FlakyStore(claim_outages=3)
    dispatcher = make_dispatcher(handlers, store, session_factory)
    job_id = await submit(session_factory, store, "generation")

    runner = asyncio.create_task(dispatcher.start())
    for _ in range(200):
        if dispatcher.jobs_succeeded == 1:
            break
        await asyncio.sleep(0.02)
    await dispatcher.stop()
    await asyncio.wait_for(runner, timeout=5)

    job = await load(session_factory, store, job_id)
    assert store.claim_outages == 0
    assert job.status == JobStatus.completed.value
    assert job.attempt_count == 1
    assert dispatcher.jobs_failed == 0


async def test_report_is_retried_while_store_is_down(handlers, session_factory):
    async def ok(payload, context):
        return {"ok": True}

    handlers.register_function("generation", ok)
    store = FlakyStore(report_outages=2)
    dispatcher = make_dispatcher(handlers, store, session_factory)
    job_id = await submit(session_factory, store, "generation")

    await dispatcher.process_next("test-1")

    job = await load(session_factory, store, job_id)
    assert job.status == JobStatus.completed.value
    assert job.attempt_count == 1


async def test_unreportable_outcome_is_left_to_the_reclaimer(handlers, session_factory):
    async def ok(payload, context):
        return {"ok": True}

    handlers.register_function("generation", ok)
    store = FlakyStore(report_outages=REPORT_ATTEMPTS)
    dispatcher = make_dispatcher(handlers, store, session_factory)
    job_id = await submit(session_factory, store, "generation")

    await dispatcher.process_next("test-1")

    job = await load(session_factory, store, job_id)
    assert job.status == JobStatus.leased.value
    assert job.lease_owner == "test-1"
    assert job.attempt_count == 1
    assert dispatcher.jobs_succeeded == 0
    assert dispatcher.leases_lost == 0


async def test_outcome_after_lost_lease_is_dropped(handlers, instant_repo, session_factory):
    async def outlived(payload, context):
        # the lease lapses and another party recovers the job meanwhile
        async with session_factory() as db:
            await instant_repo.reclaim_expired_leases(db, now=utcnow() + timedelta(hours=1))
            await db.commit()
        return {"late": True}

    handlers.register_function("generation", outlived)
    dispatcher = make_dispatcher(handlers, instant_repo, session_factory)
    job_id = await submit(session_factory, instant_repo, "generation", max_retries=3)

    await dispatcher.process_next("test-1")

    job = await load(session_factory, instant_repo, job_id)
    assert dispatcher.leases_lost == 1
    assert dispatcher.jobs_succeeded == 0
    assert job.status == JobStatus.pending.value
    assert job.result is None
    assert job.last_error.startswith("HandlerTimeout")

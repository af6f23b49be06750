import asyncio
import json
from datetime import timedelta

import click

from jobqueue.core.exceptions import StoreUnavailable
from jobqueue.db import database
from jobqueue.db.create_tables import create_tables
from jobqueue.models.base_model import utcnow
from jobqueue.repositories.job_repository import JobRepository
from jobqueue.repositories.schedule_repository import ScheduleRepository
from jobqueue.scheduler.defaults import enqueue_cleanup_jobs
from jobqueue.services.stats_service import StatsService


def _run(ctx: click.Context, operation):
    """
    Run `operation(db)` in one session against the configured store and commit.
    The engine lives only as long as this call's event loop.
    """
    async def runner():
        await database.init_database(ctx.obj["db_url"], retries=1)
        try:
            session_factory = await database.get_session_factory()
            async with session_factory() as db:
                outcome = await operation(db)
                await db.commit()
                return outcome
        finally:
            await database.close_database()

    try:
        return asyncio.run(runner())
    except StoreUnavailable as e:
        raise click.ClickException(f"Job store unavailable: {e}")


def _fmt_seconds(value):
    return "-" if value is None else f"{value:.1f}s"


@click.group(help="jobqueue: background job queue and scheduler")
@click.option("--db-url", envvar="DB_URL", default=None,
              help="SQLAlchemy URL of the job store (defaults to the configured DB_URL)")
@click.pass_context
def cli(ctx, db_url):
    ctx.ensure_object(dict)
    ctx.obj["db_url"] = db_url if db_url and "://" in db_url else None


# ---------- Service ----------
@cli.command("start", help="Run workers, scheduler and lease reclaimer until SIGINT/SIGTERM")
@click.option("--workers", "worker_count", default=None, type=click.IntRange(min=1),
              help="Number of worker loops (default: WORKER_COUNT)")
@click.option("--no-scheduler", is_flag=True, default=False,
              help="Do not tick schedules in this process")
def start_cmd(worker_count, no_scheduler):
    from jobqueue.worker_main import main

    click.secho(f"Starting service (workers={worker_count or 'default'}, "
                f"scheduler={'off' if no_scheduler else 'on'}). Ctrl+C to stop.", fg="cyan")
    asyncio.run(main(worker_count=worker_count, with_scheduler=not no_scheduler))


@cli.command("serve", help="Serve the HTTP API with uvicorn")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
def serve_cmd(host, port):
    import uvicorn

    uvicorn.run("jobqueue.main:app", host=host, port=port)


@cli.command("init-db", help="Create the job store tables")
@click.pass_context
def init_db_cmd(ctx):
    async def runner():
        try:
            await create_tables(ctx.obj["db_url"])
        finally:
            await database.close_database()

    try:
        asyncio.run(runner())
    except StoreUnavailable as e:
        raise click.ClickException(f"Job store unavailable: {e}")
    click.secho("Tables created", fg="green")


# ---------- Enqueue ----------
@cli.command("create-job", help="Enqueue a job directly. PAYLOAD is a JSON object.")
@click.argument("job_type")
@click.argument("payload")
@click.argument("priority", required=False, default=0, type=int)
@click.argument("max_retries", required=False, default=3, type=click.IntRange(min=0))
@click.argument("tenant_id", required=False, default=None)
@click.argument("user_id", required=False, default=None)
@click.option("--delay", default=None, type=click.FloatRange(min=0),
              help="Seconds before the job becomes claimable")
@click.pass_context
def create_job_cmd(ctx, job_type, payload, priority, max_retries, tenant_id, user_id, delay):
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"PAYLOAD is not valid JSON: {e}")
    if not isinstance(payload_data, dict):
        raise click.ClickException("PAYLOAD must be a JSON object")

    available_at = utcnow() + timedelta(seconds=delay) if delay else None

    async def operation(db):
        return await JobRepository().enqueue_job(
            db,
            job_type=job_type,
            payload=payload_data,
            priority=priority,
            max_retries=max_retries,
            tenant_id=tenant_id,
            user_id=user_id,
            available_at=available_at,
        )

    job = _run(ctx, operation)
    click.secho(
        f"Enqueued job {job.id} -> {job_type} (priority={priority}, max_retries={max_retries}"
        f"{', delay=' + str(delay) + 's' if delay else ''})",
        fg="green"
    )


@cli.command("cleanup", help="Enqueue the standard cleanup job set now")
@click.pass_context
def cleanup_cmd(ctx):
    jobs = _run(ctx, lambda db: enqueue_cleanup_jobs(db, JobRepository()))
    for job in jobs:
        click.echo(f"  {job.id}  {job.payload['cleanup_type']} (keep {job.payload['days_to_keep']} days)")
    click.secho(f"Enqueued {len(jobs)} cleanup jobs", fg="green")


# ---------- Operator actions ----------
@cli.command("cancel", help="Delete a pending job")
@click.argument("job_id", type=int)
@click.pass_context
def cancel_cmd(ctx, job_id):
    if not _run(ctx, lambda db: JobRepository().delete_pending_job(db, job_id)):
        raise click.ClickException(f"Job {job_id} not found or not pending")
    click.secho(f"Cancelled job {job_id}", fg="green")


@cli.command("retry", help="Requeue a failed job with a fresh attempt budget")
@click.argument("job_id", type=int)
@click.pass_context
def retry_cmd(ctx, job_id):
    job = _run(ctx, lambda db: JobRepository().retry_failed_job(db, job_id))
    if job is None:
        raise click.ClickException(f"Job {job_id} not found or not failed")
    click.secho(f"Requeued job {job_id}", fg="green")


# ---------- Inspection ----------
@cli.command("stats", help="Show job counts by status, average processing time and backlog age")
@click.option("--tenant-id", default=None, help="Restrict to one tenant")
@click.option("--window-hours", default=None, type=click.FloatRange(min=0, min_open=True),
              help="Trailing window for the average completion time (default: STATS_WINDOW_HOURS)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the snapshot as JSON")
@click.pass_context
def stats_cmd(ctx, tenant_id, window_hours, as_json):
    window = timedelta(hours=window_hours) if window_hours else None
    snapshot = _run(ctx, lambda db: StatsService().snapshot(db, tenant_id=tenant_id, window=window))

    if as_json:
        click.echo(snapshot.model_dump_json(indent=2))
        return

    click.secho("Job counts:", bold=True)
    for status, count in snapshot.counts.items():
        click.echo(f"  {status:<10} {count}")
    click.echo(f"  {'total':<10} {snapshot.total}")

    if snapshot.type_counts:
        click.secho("By type:", bold=True)
        for job_type, count in sorted(snapshot.type_counts.items()):
            click.echo(f"  {job_type:<12} {count}")

    click.echo(f"Avg completion ({snapshot.window_hours:g}h): {_fmt_seconds(snapshot.avg_completion_seconds)}"
               f" over {snapshot.completed_in_window} jobs")
    click.echo(f"Oldest pending: {_fmt_seconds(snapshot.oldest_pending_age_seconds)}")


LEVEL_COLORS = {"warn": "yellow", "error": "red"}


@cli.command("logs", help="Show the activity log of a job, oldest entry first")
@click.argument("job_id", type=int)
@click.pass_context
def logs_cmd(ctx, job_id):
    async def operation(db):
        repo = JobRepository()
        if await repo.get(db, job_id) is None:
            return None
        return await repo.logs.list_for_job(db, job_id)

    entries = _run(ctx, operation)
    if entries is None:
        raise click.ClickException(f"Job {job_id} not found")

    for entry in entries:
        click.secho(
            f"{entry.created_at.isoformat()}  #{entry.attempt}  {entry.level:<5}  {entry.event:<15}  {entry.message}",
            fg=LEVEL_COLORS.get(entry.level),
        )


@cli.command("schedules", help="List recurring job definitions")
@click.pass_context
def schedules_cmd(ctx):
    schedules = _run(ctx, lambda db: ScheduleRepository().list_schedules(db))
    if not schedules:
        click.echo("No schedules registered")
        return

    for schedule in schedules:
        state = "enabled" if schedule.enabled else "disabled"
        last = schedule.last_fired_at.isoformat() if schedule.last_fired_at else "never"
        click.echo(f"{schedule.name:<28} {schedule.cadence:<14} {schedule.job_type:<10} {state:<9} last={last}")
        if schedule.last_error:
            click.secho(f"  error: {schedule.last_error}", fg="red")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()

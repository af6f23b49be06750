"""
Service Entry Point
Runs the dispatcher (worker loops + lease reclaimer) and the scheduler in one process
Run with: python -m jobqueue.worker_main  (or: jobqueue start)
"""

import asyncio
import socket
import sys
from typing import Optional

from jobqueue.core.config import settings
from jobqueue.core.exceptions import StoreUnavailable
from jobqueue.core.logger import info, critical
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.shutdown import install_signal_handlers
from jobqueue.db import database
from jobqueue.scheduler.registry import ScheduleRegistry
from jobqueue.workers.dispatcher import Dispatcher
from jobqueue.workers.handlers import HandlerRegistry, default_registry


def load_config(worker_count: Optional[int] = None) -> dict:
    """
    Resolve the dispatcher configuration from settings, with CLI overrides

    Returns:
        Configuration dictionary
    """
    config = {
        "worker_id": settings.WORKER_ID or socket.gethostname(),
        "worker_count": worker_count or settings.WORKER_COUNT,
        "poll_interval": settings.POLL_INTERVAL,
        "max_poll_interval": settings.MAX_POLL_INTERVAL,
        "backoff_factor": settings.BACKOFF_FACTOR,
        "lease_duration": settings.LEASE_DURATION,
        "handler_timeout": settings.HANDLER_TIMEOUT,
        "reclaim_interval": settings.RECLAIM_INTERVAL,
        "drain_timeout": settings.DRAIN_TIMEOUT,
    }

    info(worker_logger, "Configuration loaded", context=config)

    return config


async def run_service(
        handlers: Optional[HandlerRegistry] = None,
        worker_count: Optional[int] = None,
        with_scheduler: bool = True,
        stop_event: Optional[asyncio.Event] = None,
):
    """
    Run until SIGTERM/SIGINT (or until stop_event is set), then drain.
    Embedding applications pass their own registry to add job types.
    """
    stop_event = stop_event or asyncio.Event()
    config = load_config(worker_count)

    info(worker_logger, "Initializing database connection...")
    await database.init_database()

    try:
        dispatcher = Dispatcher(
            handlers=handlers or default_registry(),
            stop_event=stop_event,
            **config,
        )

        install_signal_handlers(worker_logger, stop_event.set)

        components = [dispatcher.start()]
        if with_scheduler:
            scheduler = ScheduleRegistry()
            await scheduler.register_defaults()
            components.append(scheduler.run(stop_event))

        # blocks until shutdown
        await asyncio.gather(*components)
    finally:
        await database.close_database()


async def main(worker_count: Optional[int] = None, with_scheduler: bool = True):
    """
    Main function to start the service
    """
    info(worker_logger, "Service process starting...")

    try:
        await run_service(worker_count=worker_count, with_scheduler=with_scheduler)

    except StoreUnavailable as e:
        critical(worker_logger, "Job store unreachable at startup", context={
            "error": str(e),
        })
        sys.exit(1)

    except Exception as e:
        critical(worker_logger, "Service failed", context={
            "error": str(e),
            "error_type": type(e).__name__
        })
        sys.exit(1)

    info(worker_logger, "Service process terminated")


if __name__ == "__main__":
    asyncio.run(main())

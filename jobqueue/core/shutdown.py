"""
Cooperative shutdown helpers shared by the worker loops, the reclaimer and the scheduler
"""
import asyncio
import signal
from typing import Callable

from jobqueue.core.logger import info, warning


async def sleep_or_shutdown(stop_event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep up to `timeout` seconds, waking early when shutdown is requested.

    Returns:
        True if shutdown was requested
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(timeout, 0))
    except asyncio.TimeoutError:
        pass
    return stop_event.is_set()


def install_signal_handlers(logger, on_signal: Callable[[], None]) -> None:
    """Call `on_signal` on SIGTERM/SIGINT from inside the running event loop"""
    loop = asyncio.get_running_loop()

    def handler(signum):
        signal_name = signal.Signals(signum).name
        warning(logger, f"Received {signal_name} signal, initiating graceful shutdown...")
        on_signal()

    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, handler, signum)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends the process
            signal.signal(signum, lambda s, _frame: loop.call_soon_threadsafe(handler, s))

    info(logger, "Signal handlers registered (SIGTERM, SIGINT)")

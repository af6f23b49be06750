"""
Job Handler Registry
Maps job_type to handler instances. The embedding application registers
its handlers (e.g. 'generation') at startup; the dispatcher only looks them up.
"""

from typing import Dict, Optional, Callable, Awaitable, Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.core.exceptions import HandlerError
from jobqueue.core.setup_logger import worker_logger
from jobqueue.core.logger import info
from jobqueue.workers.job_handlers import AnalyticsHandler, BaseJobHandler, CleanupHandler, FunctionHandler


class HandlerRegistry:

    def __init__(self):
        self._handlers: Dict[str, BaseJobHandler] = {}

    def register(self, handler: BaseJobHandler) -> None:
        """
        Register a handler under its job_type, replacing any previous one

        Args:
            handler: Handler instance (must inherit from BaseJobHandler)
        """
        if not isinstance(handler, BaseJobHandler):
            raise TypeError("Handler must inherit from BaseJobHandler")

        info(worker_logger, f"Registering handler for job_type: {handler.job_type}")
        self._handlers[handler.job_type] = handler

    def register_function(
            self,
            job_type: str,
            fn: Callable[..., Awaitable[Optional[Dict[str, Any]]]],
    ) -> None:
        """Register a coroutine function `fn(payload, context)` as a handler"""
        self.register(FunctionHandler(job_type, fn))

    def get(self, job_type: str) -> BaseJobHandler:
        """
        Get handler instance for a given job type

        Raises:
            HandlerError: If job_type is not registered
        """
        handler = self._handlers.get(job_type)

        if not handler:
            available_types = ", ".join(sorted(self._handlers)) or "none"
            raise HandlerError(
                f"No handler registered for job_type: '{job_type}'. "
                f"Available types: {available_types}"
            )

        return handler

    def list_types(self) -> list:
        """Get list of all registered job types"""
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


def default_registry(session_factory: Optional[async_sessionmaker] = None) -> HandlerRegistry:
    """Registry with the queue's own maintenance handlers (cleanup, analytics)"""
    registry = HandlerRegistry()
    registry.register(CleanupHandler(session_factory=session_factory))
    registry.register(AnalyticsHandler(session_factory=session_factory))
    return registry

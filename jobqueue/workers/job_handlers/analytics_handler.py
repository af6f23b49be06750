"""
Analytics aggregation job handler
"""
import re
from datetime import timedelta
from typing import Dict, Any, Optional, Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.constants.job_types import JobTypes
from jobqueue.core.exceptions import HandlerError
from jobqueue.core.logger import info, debug, warning
from jobqueue.db import database
from jobqueue.services.stats_service import StatsService
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler, JobContext

# fn(window, payload) -> result dictionary
Analyzer = Callable[[timedelta, Dict[str, Any]], Awaitable[Dict[str, Any]]]

DATE_RANGE_PATTERN = re.compile(r"^(\d+)([mhd])$")
DATE_RANGE_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def parse_date_range(value: str) -> timedelta:
    """'30m', '24h', '7d' -> timedelta"""
    match = DATE_RANGE_PATTERN.match(str(value).strip())
    if not match:
        raise HandlerError(f"Invalid date_range {value!r}, expected e.g. '30m', '24h' or '7d'")
    amount, unit = match.groups()
    return timedelta(**{DATE_RANGE_UNITS[unit]: int(amount)})


class AnalyticsHandler(BaseJobHandler):
    """
    Handler for periodic analytics jobs.

    `queue_stats` rolls up the job queue itself. Product analytics are
    registered by the embedding application as analyzers.
    """

    def __init__(
            self,
            session_factory: Optional[async_sessionmaker] = None,
            stats_service: Optional[StatsService] = None,
    ):
        super().__init__()
        self._session_factory = session_factory
        self.stats_service = stats_service or StatsService()
        self.analyzers: Dict[str, Analyzer] = {"queue_stats": self._queue_stats}

    @property
    def job_type(self) -> str:
        return JobTypes.analytics.value

    def register_analyzer(self, analysis_type: str, analyzer: Analyzer) -> None:
        info(self.logger, f"Registering analyzer for analysis_type: {analysis_type}")
        self.analyzers[analysis_type] = analyzer

    async def _queue_stats(self, window: timedelta, payload: Dict[str, Any]) -> Dict[str, Any]:
        session_factory = self._session_factory or await database.get_session_factory()
        async with session_factory() as db:
            stats = await self.stats_service.snapshot(db, tenant_id=payload.get("tenant_id"), window=window)
        return stats.model_dump(mode="json")

    async def execute(self, payload: Dict[str, Any], context: JobContext) -> Dict[str, Any]:
        """
        Expected payload:
        {
            "analysis_type": "queue_stats|...",
            "date_range": "7d"
        }
        """
        debug(self.logger, "Analytics handler started", context={"job_id": context.job_id, **payload})

        analysis_type = payload.get("analysis_type")
        if not analysis_type:
            raise HandlerError("analysis_type is required")

        window = parse_date_range(payload.get("date_range", "7d"))

        analyzer = self.analyzers.get(analysis_type)
        if analyzer is None:
            warning(self.logger, "No analyzer registered for analysis type, skipping", context={
                "job_id": context.job_id,
                "analysis_type": analysis_type,
            })
            return {"status": "skipped", "analysis_type": analysis_type}

        report = await analyzer(window, payload)

        info(self.logger, "Analytics processed", context={
            "job_id": context.job_id,
            "analysis_type": analysis_type,
        })
        return {"status": "processed", "analysis_type": analysis_type, "report": report}

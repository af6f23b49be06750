"""
Cron cadence evaluation. Pure: nothing here touches the store or the clock.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from jobqueue.core.exceptions import ScheduleMisconfigured

ONE_MICROSECOND = timedelta(microseconds=1)


class Cadence:
    """A five-field crontab expression evaluated in UTC"""

    def __init__(self, expression: str, trigger: CronTrigger):
        self.expression = expression
        self._trigger = trigger

    def next_after(self, instant: datetime) -> Optional[datetime]:
        """First fire instant strictly after `instant`, or None if the cadence never fires again"""
        fire_time = self._trigger.get_next_fire_time(None, instant + ONE_MICROSECOND)
        if fire_time is None:
            return None
        return fire_time.astimezone(timezone.utc)

    def latest_fire_between(self, after: datetime, now: datetime) -> Optional[datetime]:
        """
        Most recent fire instant in (after, now], or None when nothing is due.
        Missed instants collapse into this one, so a long outage fires once.
        """
        first = self.next_after(after)
        if first is None or first > now:
            return None

        # widen a window back from `now` until it holds a fire instant,
        # then walk forward; avoids stepping through every missed period
        window = timedelta(seconds=1)
        while True:
            start = max(now - window, after)
            candidate = self.next_after(start)
            if candidate is not None and candidate <= now:
                break
            window *= 2

        latest = candidate
        while True:
            following = self.next_after(latest)
            if following is None or following > now:
                return latest
            latest = following

    def __repr__(self):
        return f"Cadence('{self.expression}')"


def parse_cadence(expression: str) -> Cadence:
    """
    Raises:
        ScheduleMisconfigured: expression is not a valid five-field crontab
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ScheduleMisconfigured(f"Empty cadence: {expression!r}")

    try:
        trigger = CronTrigger.from_crontab(expression.strip(), timezone="UTC")
    except (ValueError, TypeError, KeyError) as e:
        raise ScheduleMisconfigured(f"Invalid cadence '{expression}': {e}") from e

    return Cadence(expression.strip(), trigger)

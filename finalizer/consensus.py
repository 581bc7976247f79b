"""Picks the meeting time everyone can make.

Availability arrives as whatever the record store holds: ISO-8601 strings
with or without an offset, ``Z`` suffixed strings, or datetimes. Every value
is normalized to an aware UTC datetime before it is counted, so the same
instant written two different ways is counted once.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterable, List, Optional

from .models import Outcome

logger = logging.getLogger(__name__)

FRIDAY = 4
FALLBACK_HOUR = 19


def normalize_instant(value, local_tz: tzinfo) -> datetime:
    """Return value as an aware UTC datetime.

    Naive values are read as local_tz wall-clock time. Raises ValueError
    for anything that is not a datetime or ISO-8601 string.
    """
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        instant = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported instant: {value!r}")

    if instant.tzinfo is None or instant.utcoffset() is None:
        instant = instant.replace(tzinfo=local_tz)
    return instant.astimezone(timezone.utc)


def next_friday_evening(now: datetime, local_tz: tzinfo) -> datetime:
    """Next Friday 19:00 local time, strictly after today's date"""
    local_now = now.astimezone(local_tz)
    days_until_friday = (FRIDAY - local_now.weekday()) % 7 or 7
    target_day = (local_now + timedelta(days=days_until_friday)).date()
    target = datetime(target_day.year, target_day.month, target_day.day, FALLBACK_HOUR, tzinfo=local_tz)
    return target.astimezone(timezone.utc)


class ScheduleConsensus:

    def __init__(self, local_tz: tzinfo, clock: Optional[Callable[[], datetime]] = None):
        self.local_tz = local_tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def normalize(self, values: Iterable) -> List[datetime]:
        instants = []
        for value in values:
            try:
                instants.append(normalize_instant(value, self.local_tz))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unparseable availability value: {value!r}")
        return instants

    def resolve(self, values: Iterable) -> Outcome[datetime]:
        """Most frequently offered instant; earliest wins a tie"""
        counts = Counter(self.normalize(values))
        if not counts:
            fallback = next_friday_evening(self.clock(), self.local_tz)
            logger.info(f"No availability submitted, defaulting to {fallback.isoformat()}")
            return Outcome.fallback(fallback, "no availability submitted")

        best = min(counts, key=lambda instant: (-counts[instant], instant))
        logger.info(f"Consensus time {best.isoformat()} ({counts[best]} of {sum(counts.values())} votes)")
        return Outcome.found(best)

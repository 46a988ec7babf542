"""Seven-day mining streak evaluation on UTC calendar days."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from mining_rewards.mining.stores import SessionStore
from mining_rewards.time_utils import to_utc

logger = logging.getLogger(__name__)

STREAK_DAYS = 7


def utc_day_key(dt: datetime) -> date:
    """Calendar day of an instant, in UTC."""
    return to_utc(dt).date()


def streak_window(reference: datetime, days: int = STREAK_DAYS) -> tuple[datetime, datetime]:
    """Query window: 00:00 UTC of the first streak day through ``reference``.

    Starting at midnight rather than ``reference - 6 days`` keeps an early
    session on the first day inside the window.
    """
    ref = to_utc(reference)
    first_day = ref.date() - timedelta(days=days - 1)
    return datetime.combine(first_day, time.min, tzinfo=timezone.utc), ref


def required_days(reference: datetime, days: int = STREAK_DAYS) -> list[date]:
    """The calendar days that must each contain a session start."""
    ref_day = utc_day_key(reference)
    return [ref_day - timedelta(days=offset) for offset in range(days)]


def is_streak(starts: list[datetime], reference: datetime, days: int = STREAK_DAYS) -> bool:
    """True if every one of the ``days`` days ending on ``reference`` has a start."""
    if not starts:
        return False
    mined = {utc_day_key(s) for s in starts}
    return all(day in mined for day in required_days(reference, days))


class StreakEvaluator:
    """Checks whether a user mined on each of the last seven UTC days."""

    def __init__(self, sessions: SessionStore, days: int = STREAK_DAYS) -> None:
        self._sessions = sessions
        self._days = days

    async def has_streak(self, user_id: str, reference: datetime) -> bool:
        window_start, window_end = streak_window(reference, self._days)
        starts = await self._sessions.list_starts_in_range(user_id, window_start, window_end)
        result = is_streak(starts, reference, self._days)
        logger.debug(
            "Streak for %s at %s: %s (%d sessions in window)",
            user_id, window_end.isoformat(), result, len(starts),
        )
        return result

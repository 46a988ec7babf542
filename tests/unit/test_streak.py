"""Seven-day streak evaluation on UTC calendar days."""

from datetime import date, datetime, timedelta, timezone

import pytest
from conftest import add_session

from mining_rewards.db.models import SessionState
from mining_rewards.mining.streak import (
    StreakEvaluator,
    is_streak,
    required_days,
    streak_window,
    utc_day_key,
)
from mining_rewards.time_utils import to_utc

REF = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _daily_starts(reference: datetime, hour: int = 8) -> list[datetime]:
    day = reference.date()
    return [
        datetime(d.year, d.month, d.day, hour, 0, tzinfo=timezone.utc)
        for d in (day - timedelta(days=offset) for offset in range(7))
    ]


class TestWindow:
    def test_window_starts_at_midnight_six_days_back(self):
        start, end = streak_window(REF)
        assert start == datetime(2026, 3, 4, 0, 0, tzinfo=timezone.utc)
        assert end == REF

    def test_required_days(self):
        days = required_days(REF)
        assert days[0] == date(2026, 3, 10)
        assert days[-1] == date(2026, 3, 4)
        assert len(days) == 7

    def test_naive_datetimes_are_utc(self):
        naive = datetime(2026, 3, 10, 23, 59)
        assert to_utc(naive).tzinfo == timezone.utc
        assert utc_day_key(naive) == date(2026, 3, 10)

    def test_day_key_uses_utc_not_local_offset(self):
        """23:30 at UTC-5 is already the next UTC day."""
        local = datetime(2026, 3, 9, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert utc_day_key(local) == date(2026, 3, 10)


class TestIsStreak:
    def test_every_day_present(self):
        assert is_streak(_daily_starts(REF), REF) is True

    @pytest.mark.parametrize("missing", range(7))
    def test_any_missing_day_breaks_streak(self, missing):
        starts = _daily_starts(REF)
        del starts[missing]
        assert is_streak(starts, REF) is False

    def test_no_sessions(self):
        assert is_streak([], REF) is False

    def test_multiple_sessions_per_day_count_once(self):
        starts = _daily_starts(REF) + _daily_starts(REF, hour=20)
        assert is_streak(starts, REF) is True

    def test_midnight_boundary(self):
        """00:00:00 belongs to the new day, 23:59:59 to the old one."""
        starts = _daily_starts(REF)
        starts[6] = datetime(2026, 3, 4, 0, 0, 0, tzinfo=timezone.utc)
        assert is_streak(starts, REF) is True
        starts[6] = datetime(2026, 3, 3, 23, 59, 59, tzinfo=timezone.utc)
        assert is_streak(starts, REF) is False


class TestStreakEvaluator:
    async def test_reads_sessions_from_store(self, stores):
        for i, start in enumerate(_daily_starts(REF, hour=0)):
            await add_session(stores, f"s{i}", "u1", start, state=SessionState.COMPLETED)
        evaluator = StreakEvaluator(stores.sessions)
        assert await evaluator.has_streak("u1", REF) is True

    async def test_first_day_early_session_is_in_window(self, stores):
        """A 00:01 session on the first streak day must count."""
        for i, start in enumerate(_daily_starts(REF)):
            if start.date() == date(2026, 3, 4):
                start = start.replace(hour=0, minute=1)
            await add_session(stores, f"s{i}", "u1", start)
        assert await StreakEvaluator(stores.sessions).has_streak("u1", REF) is True

    async def test_other_users_sessions_ignored(self, stores):
        for i, start in enumerate(_daily_starts(REF)):
            await add_session(stores, f"s{i}", "someone-else", start)
        assert await StreakEvaluator(stores.sessions).has_streak("u1", REF) is False

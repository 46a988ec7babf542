"""In-process store implementations.

Used by the inline trigger backend and the test suite. Each store guards
its state with an ``asyncio.Lock`` so conditional writes keep the same
compare-and-set semantics as the PostgreSQL statements.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from mining_rewards.db.models import SessionState
from mining_rewards.errors import UserNotFoundError
from mining_rewards.mining.records import WRITE_ONCE_FIELDS, SessionRecord, UserRecord, check_transition
from mining_rewards.mining.stores import INCREMENTABLE_USER_FIELDS
from mining_rewards.referrals.pagination import decode_cursor, slice_page


class MemorySessionStore:
    def __init__(self) -> None:
        self._rows: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> SessionRecord | None:
        return self._rows.get(session_id)

    async def create(self, record: SessionRecord) -> SessionRecord:
        async with self._lock:
            if record.id in self._rows:
                msg = f"Mining session already exists: {record.id}"
                raise ValueError(msg)
            self._rows[record.id] = record
        return record

    async def conditional_update(
        self,
        session_id: str,
        expected: SessionState,
        new: SessionState,
        fields: dict[str, Any],
    ) -> SessionRecord | None:
        check_transition(expected, new, fields)
        # Yield first so concurrent callers genuinely interleave.
        await asyncio.sleep(0)
        async with self._lock:
            row = self._rows.get(session_id)
            if row is None or row.state != expected:
                return None
            if any(name in fields and getattr(row, name) is not None for name in WRITE_ONCE_FIELDS):
                return None
            updated = row.with_fields(state=new, **fields)
            self._rows[session_id] = updated
            return updated

    async def list_starts_in_range(self, user_id: str, start: datetime, end: datetime) -> list[datetime]:
        return [
            row.start_at
            for row in self._rows.values()
            if row.user_id == user_id and start <= row.start_at <= end
        ]

    async def latest_start(self, user_id: str) -> datetime | None:
        starts = [row.start_at for row in self._rows.values() if row.user_id == user_id]
        return max(starts) if starts else None

    async def list_overdue(self, state: SessionState, before: datetime, limit: int) -> list[SessionRecord]:
        def _key(row: SessionRecord) -> datetime | None:
            return row.end_at if state == SessionState.ACTIVE else row.start_at

        matches = [
            row for row in self._rows.values()
            if row.state == state and _key(row) is not None and _key(row) < before
        ]
        matches.sort(key=_key)  # type: ignore[arg-type]
        return matches[:limit]


class MemoryUserStore:
    def __init__(self) -> None:
        self._rows: dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> UserRecord | None:
        return self._rows.get(user_id)

    async def create(self, record: UserRecord) -> UserRecord:
        async with self._lock:
            if record.id in self._rows:
                msg = f"User already exists: {record.id}"
                raise ValueError(msg)
            self._rows[record.id] = record
        return record

    async def referral_code_exists(self, code: str) -> bool:
        return any(row.referral_code == code for row in self._rows.values())

    async def conditional_increment(self, user_id: str, field: str, amount: Decimal) -> Decimal:
        if field not in INCREMENTABLE_USER_FIELDS:
            msg = f"Field {field!r} cannot be incremented"
            raise ValueError(msg)
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None:
                raise UserNotFoundError(user_id)
            new_value = getattr(row, field) + amount
            self._rows[user_id] = replace(row, **{field: new_value})
        return new_value

    def referred_by(self, code: str) -> list[str]:
        return sorted(row.id for row in self._rows.values() if row.referred_by_code == code)


class MemoryPopulationCounter:
    def __init__(self, count: int = 0) -> None:
        self._count = count
        self._lock = asyncio.Lock()

    async def get(self) -> int:
        return self._count

    async def increment(self, by: int = 1) -> int:
        async with self._lock:
            self._count += by
            return self._count


class MemoryReferralIndex:
    """Referral index derived from a :class:`MemoryUserStore`."""

    def __init__(self, users: MemoryUserStore) -> None:
        self._users = users

    async def list_by_referral_code(
        self,
        code: str,
        page_token: str | None = None,
        limit: int = 100,
    ) -> tuple[list[str], str | None]:
        ids = self._users.referred_by(code)
        if page_token is not None:
            after = decode_cursor(page_token)
            ids = [user_id for user_id in ids if user_id > after]
        return slice_page(ids[: limit + 1], limit)

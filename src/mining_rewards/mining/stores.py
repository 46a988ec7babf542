"""Store interfaces and their PostgreSQL implementations.

All writes that other components race on are single conditional
statements: the session state moves through ``UPDATE ... WHERE state =
:expected RETURNING`` and the balance through ``UPDATE ... SET balance =
balance + :amount RETURNING``. Nothing here reads a row and writes it back.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import Update, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mining_rewards.db.models import AppData, MiningSession, SessionState, User
from mining_rewards.errors import UserNotFoundError
from mining_rewards.mining.records import WRITE_ONCE_FIELDS, SessionRecord, UserRecord, check_transition

APP_DATA_ID = "main"
INCREMENTABLE_USER_FIELDS = frozenset({"balance"})


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class SessionStore(Protocol):
    async def get(self, session_id: str) -> SessionRecord | None: ...

    async def create(self, record: SessionRecord) -> SessionRecord: ...

    async def conditional_update(
        self,
        session_id: str,
        expected: SessionState,
        new: SessionState,
        fields: dict[str, Any],
    ) -> SessionRecord | None:
        """Compare-and-set the state. Returns None if the condition failed."""
        ...

    async def list_starts_in_range(self, user_id: str, start: datetime, end: datetime) -> list[datetime]: ...

    async def latest_start(self, user_id: str) -> datetime | None: ...

    async def list_overdue(self, state: SessionState, before: datetime, limit: int) -> list[SessionRecord]:
        """PENDING sessions started before ``before`` or ACTIVE sessions whose end passed it."""
        ...


class UserStore(Protocol):
    async def get(self, user_id: str) -> UserRecord | None: ...

    async def create(self, record: UserRecord) -> UserRecord: ...

    async def referral_code_exists(self, code: str) -> bool: ...

    async def conditional_increment(self, user_id: str, field: str, amount: Decimal) -> Decimal:
        """Atomically add ``amount``. Raises UserNotFoundError if the user is gone."""
        ...


class PopulationCounter(Protocol):
    async def get(self) -> int: ...

    async def increment(self, by: int = 1) -> int: ...


class ReferralIndex(Protocol):
    async def list_by_referral_code(
        self,
        code: str,
        page_token: str | None = None,
        limit: int = 100,
    ) -> tuple[list[str], str | None]: ...


# ---------------------------------------------------------------------------
# Statement builders
# ---------------------------------------------------------------------------


def build_transition_statement(
    session_id: str,
    expected: SessionState,
    new: SessionState,
    fields: dict[str, Any],
) -> Update:
    """Conditional state transition, returning the updated row."""
    check_transition(expected, new, fields)
    stmt = (
        update(MiningSession)
        .where(MiningSession.id == session_id, MiningSession.state == expected)
        .values(state=new, **fields)
        .returning(MiningSession)
        .execution_options(synchronize_session=False)
    )
    for name in WRITE_ONCE_FIELDS:
        if name in fields:
            stmt = stmt.where(getattr(MiningSession, name).is_(None))
    return stmt


def build_increment_statement(user_id: str, field: str, amount: Decimal) -> Update:
    """Atomic ``field = field + amount`` for an existing user."""
    if field not in INCREMENTABLE_USER_FIELDS:
        msg = f"Field {field!r} cannot be incremented"
        raise ValueError(msg)
    column = getattr(User, field)
    return (
        update(User)
        .where(User.id == user_id)
        .values({field: column + amount})
        .returning(column)
        .execution_options(synchronize_session=False)
    )


def _session_record(row: MiningSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        start_at=row.start_at,
        state=SessionState(row.state),
        end_at=row.end_at,
        reward_distributed_at=row.reward_distributed_at,
    )


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        referral_code=row.referral_code,
        referred_by_code=row.referred_by_code,
        balance=row.balance if row.balance is not None else Decimal("0"),
    )


# ---------------------------------------------------------------------------
# PostgreSQL implementations
# ---------------------------------------------------------------------------


class SqlSessionStore:
    """Mining session store on the ``mining_sessions`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, session_id: str) -> SessionRecord | None:
        async with self._session_factory() as db:
            row = await db.get(MiningSession, session_id)
            return _session_record(row) if row is not None else None

    async def create(self, record: SessionRecord) -> SessionRecord:
        async with self._session_factory() as db:
            db.add(MiningSession(
                id=record.id,
                user_id=record.user_id,
                start_at=record.start_at,
                end_at=record.end_at,
                state=record.state,
            ))
            await db.commit()
        return record

    async def conditional_update(
        self,
        session_id: str,
        expected: SessionState,
        new: SessionState,
        fields: dict[str, Any],
    ) -> SessionRecord | None:
        stmt = build_transition_statement(session_id, expected, new, fields)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            record = _session_record(row) if row is not None else None
            await db.commit()
        return record

    async def list_starts_in_range(self, user_id: str, start: datetime, end: datetime) -> list[datetime]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(MiningSession.start_at).where(
                    MiningSession.user_id == user_id,
                    MiningSession.start_at.between(start, end),
                )
            )
            return list(result.scalars().all())

    async def latest_start(self, user_id: str) -> datetime | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(MiningSession.start_at)
                .where(MiningSession.user_id == user_id)
                .order_by(MiningSession.start_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_overdue(self, state: SessionState, before: datetime, limit: int) -> list[SessionRecord]:
        column = MiningSession.end_at if state == SessionState.ACTIVE else MiningSession.start_at
        async with self._session_factory() as db:
            result = await db.execute(
                select(MiningSession)
                .where(MiningSession.state == state, column < before)
                .order_by(column.asc())
                .limit(limit)
            )
            return [_session_record(row) for row in result.scalars().all()]


class SqlUserStore:
    """User store on the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> UserRecord | None:
        async with self._session_factory() as db:
            row = await db.get(User, user_id)
            return _user_record(row) if row is not None else None

    async def create(self, record: UserRecord) -> UserRecord:
        async with self._session_factory() as db:
            db.add(User(
                id=record.id,
                referral_code=record.referral_code,
                referred_by_code=record.referred_by_code,
                balance=record.balance,
            ))
            await db.commit()
        return record

    async def referral_code_exists(self, code: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(select(User.id).where(User.referral_code == code).limit(1))
            return result.scalar_one_or_none() is not None

    async def conditional_increment(self, user_id: str, field: str, amount: Decimal) -> Decimal:
        stmt = build_increment_statement(user_id, field, amount)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            new_value = result.scalar_one_or_none()
            if new_value is None:
                await db.rollback()
                raise UserNotFoundError(user_id)
            await db.commit()
        return new_value


class SqlPopulationCounter:
    """Registered-user count kept in ``app_data`` row 'main'."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AppData.registered_users_count).where(AppData.id == APP_DATA_ID)
            )
            return int(result.scalar_one_or_none() or 0)

    async def increment(self, by: int = 1) -> int:
        stmt = pg_insert(AppData).values(id=APP_DATA_ID, registered_users_count=by)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AppData.id],
            set_={"registered_users_count": AppData.registered_users_count + by},
        ).returning(AppData.registered_users_count)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            count = int(result.scalar_one())
            await db.commit()
        return count

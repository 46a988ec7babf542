"""ORM models for the tables this service reads and writes.

The tables are provisioned outside this service; these mappings only
describe the columns the session lifecycle relies on.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Index,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from mining_rewards.db.base import Base


class SessionState(str, enum.Enum):
    """Mining session lifecycle. Transitions only move forward."""

    PENDING = "PENDING"  # created, end instant not yet computed
    ACTIVE = "ACTIVE"  # end instant persisted, completion trigger armed
    COMPLETED = "COMPLETED"  # reward distributed (terminal)

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = [SessionState.PENDING, SessionState.ACTIVE, SessionState.COMPLETED]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    referral_code: Mapped[str | None] = mapped_column(String(16), unique=True, nullable=True)
    referred_by_code: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 3), nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Mining sessions
# ---------------------------------------------------------------------------


class MiningSession(Base):
    """One time-boxed earning window for a user."""

    __tablename__ = "mining_sessions"
    __table_args__ = (
        Index("ix_mining_sessions_user_id_start_at", "user_id", "start_at"),
        {"extend_existing": True},
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    state: Mapped[SessionState] = mapped_column(
        Enum(SessionState, name="mining_session_state", native_enum=False, length=16),
        nullable=False,
        server_default=SessionState.PENDING.value,
    )
    reward_distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Global counters
# ---------------------------------------------------------------------------


class AppData(Base):
    """Single-row global aggregates (id='main')."""

    __tablename__ = "app_data"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    registered_users_count: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")

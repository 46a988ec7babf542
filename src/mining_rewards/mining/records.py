"""Store-independent records passed across the store interfaces."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from mining_rewards.db.models import SessionState

# Fields that may accompany a state transition. Each may be set once.
TRANSITION_FIELDS = frozenset({"end_at", "reward_distributed_at"})
WRITE_ONCE_FIELDS = ("end_at", "reward_distributed_at")


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of a mining session row."""

    id: str
    user_id: str
    start_at: datetime
    state: SessionState = SessionState.PENDING
    end_at: datetime | None = None
    reward_distributed_at: datetime | None = None

    def with_fields(self, **fields: Any) -> SessionRecord:
        return replace(self, **fields)


@dataclass(frozen=True)
class UserRecord:
    """Snapshot of a user row as seen by the reward engine."""

    id: str
    referral_code: str | None = None
    referred_by_code: str | None = None
    balance: Decimal = Decimal("0")


def check_transition(expected: SessionState, new: SessionState, fields: dict[str, Any]) -> None:
    """Validate a requested transition before it reaches a store.

    Raises:
        ValueError: If the transition would move the state backwards or
            touches fields outside the transition set.
    """
    if new.rank <= expected.rank:
        msg = f"Session state cannot move from {expected.value} to {new.value}"
        raise ValueError(msg)
    unknown = set(fields) - TRANSITION_FIELDS
    if unknown:
        msg = f"Fields not writable during a transition: {sorted(unknown)}"
        raise ValueError(msg)

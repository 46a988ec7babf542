"""Pydantic schemas for lifecycle events and the mining API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from mining_rewards.db.models import SessionState

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class SessionCreatedEvent(BaseModel):
    """Session-creation notification. Delivered at least once."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    start_instant: datetime = Field(alias="startInstant")


class CompletionPayload(BaseModel):
    """Payload carried by the deferred completion trigger."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class CreateSessionRequest(BaseModel):
    """Body for POST /mining/sessions."""

    user_id: str = Field(min_length=1, max_length=64)
    session_id: str | None = Field(default=None, max_length=64)
    start_at: datetime | None = None


class SessionResponse(BaseModel):
    session_id: str
    user_id: str
    state: SessionState
    start_at: datetime
    end_at: datetime | None = None
    reward_distributed_at: datetime | None = None


class RewardPreviewResponse(BaseModel):
    """Response for GET /mining/reward-preview."""

    population: int
    base: Decimal
    active_referrals: int
    social_multiplier: Decimal
    has_streak: bool
    streak_multiplier: Decimal
    reward: Decimal

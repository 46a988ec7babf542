"""Mining session API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError

from mining_rewards.config import get_settings
from mining_rewards.dependencies import Stores, get_event_publisher, get_stores
from mining_rewards.errors import SessionNotFoundError, UserNotFoundError
from mining_rewards.mining import schemas, service
from mining_rewards.mining.reward import calculate_reward

router = APIRouter(prefix="/api/v1/mining", tags=["Mining"])


# ---------------------------------------------------------------------------
# POST /mining/sessions: Start a session
# ---------------------------------------------------------------------------
@router.post("/sessions", response_model=schemas.SessionResponse, status_code=201)
async def create_session(
    body: schemas.CreateSessionRequest,
    stores: Stores = Depends(get_stores),  # noqa: B008
    publisher: service.SessionEventPublisher = Depends(get_event_publisher),  # noqa: B008
) -> schemas.SessionResponse:
    """Create a PENDING session; scheduling happens asynchronously."""
    try:
        return await service.create_session(stores, publisher, body)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail="User not found") from exc
    except (ValueError, IntegrityError) as exc:
        raise HTTPException(status_code=409, detail="Session already exists") from exc


# ---------------------------------------------------------------------------
# GET /mining/sessions/{session_id}: Session state
# ---------------------------------------------------------------------------
@router.get("/sessions/{session_id}", response_model=schemas.SessionResponse)
async def read_session(
    session_id: str,
    stores: Stores = Depends(get_stores),  # noqa: B008
) -> schemas.SessionResponse:
    """Get a session's lifecycle state and end instant."""
    try:
        return await service.get_session_detail(stores, session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc


# ---------------------------------------------------------------------------
# GET /mining/reward-preview: Pure reward calculation
# ---------------------------------------------------------------------------
@router.get("/reward-preview", response_model=schemas.RewardPreviewResponse)
async def reward_preview(
    population: int = Query(..., ge=0),
    active_referrals: int = Query(0, ge=0),
    streak: bool = Query(False),
) -> schemas.RewardPreviewResponse:
    """Reward a session would earn for the given factors."""
    breakdown = calculate_reward(population, active_referrals, streak, get_settings().referral_bonus_cap)
    return schemas.RewardPreviewResponse(
        population=breakdown.population,
        base=breakdown.base,
        active_referrals=breakdown.active_referrals,
        social_multiplier=breakdown.social,
        has_streak=breakdown.has_streak,
        streak_multiplier=breakdown.streak,
        reward=breakdown.reward,
    )

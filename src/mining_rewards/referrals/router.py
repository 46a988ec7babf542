"""Referral statistics router."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from mining_rewards.config import get_settings
from mining_rewards.dependencies import Stores, build_resolver, get_stores
from mining_rewards.users.referral_codes import normalize_referral_code

router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals"])


class ReferralStatsResponse(BaseModel):
    referral_code: str
    invited_user_ids: list[str]
    active_user_ids: list[str]
    start: datetime | None = None
    end: datetime | None = None


@router.get("/{code}/stats", response_model=ReferralStatsResponse)
async def referral_stats(
    code: str,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    stores: Stores = Depends(get_stores),  # noqa: B008
) -> ReferralStatsResponse:
    """Users referred by a code and, given a window, those who mined in it."""
    if (start is None) != (end is None):
        raise HTTPException(status_code=422, detail="start and end must be given together")
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")

    normalized = normalize_referral_code(code)
    resolver = build_resolver(get_settings(), stores)
    if start is None or end is None:
        invited = await resolver.list_invited(normalized)
        return ReferralStatsResponse(referral_code=normalized, invited_user_ids=invited, active_user_ids=[])

    activity = await resolver.resolve(normalized, start, end)
    return ReferralStatsResponse(
        referral_code=normalized,
        invited_user_ids=activity.invited_user_ids,
        active_user_ids=activity.active_user_ids,
        start=start,
        end=end,
    )

"""User router: /api/v1/users endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError

from mining_rewards.dependencies import Stores, get_stores
from mining_rewards.errors import UserNotFoundError
from mining_rewards.mining.records import UserRecord
from mining_rewards.users.schemas import RegisterUserRequest, UserResponse
from mining_rewards.users.service import get_user, register_user

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        user_id=user.id,
        referral_code=user.referral_code,
        referred_by_code=user.referred_by_code,
        balance=user.balance,
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    body: RegisterUserRequest,
    stores: Stores = Depends(get_stores),  # noqa: B008
) -> UserResponse:
    """Register a user and count it in the population."""
    try:
        user = await register_user(stores.users, stores.population, body.user_id, body.referred_by_code)
    except (ValueError, IntegrityError) as exc:
        raise HTTPException(status_code=409, detail="User already exists") from exc
    return _user_response(user)


@router.get("/{user_id}", response_model=UserResponse)
async def read_user(
    user_id: str,
    stores: Stores = Depends(get_stores),  # noqa: B008
) -> UserResponse:
    """Get a user's referral code and balance."""
    try:
        user = await get_user(stores.users, user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail="User not found") from exc
    return _user_response(user)

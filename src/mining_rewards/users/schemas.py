"""Pydantic schemas for user endpoints."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class RegisterUserRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    referred_by_code: str | None = Field(default=None, max_length=16)


class UserResponse(BaseModel):
    user_id: str
    referral_code: str | None = None
    referred_by_code: str | None = None
    balance: Decimal = Decimal("0")

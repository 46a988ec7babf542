"""User registration and the registered-user population counter."""

from __future__ import annotations

import structlog

from mining_rewards.errors import UserNotFoundError
from mining_rewards.mining.records import UserRecord
from mining_rewards.mining.stores import PopulationCounter, UserStore
from mining_rewards.users.referral_codes import generate_unique_referral_code, normalize_referral_code

logger = structlog.get_logger()


async def register_user(
    users: UserStore,
    population: PopulationCounter,
    user_id: str,
    referred_by_code: str | None = None,
) -> UserRecord:
    """
    Create a user with a fresh referral code and count it in the population.

    Raises:
        ValueError: If the user already exists.
    """
    if await users.get(user_id) is not None:
        msg = f"User already exists: {user_id}"
        raise ValueError(msg)

    record = UserRecord(
        id=user_id,
        referral_code=await generate_unique_referral_code(users),
        referred_by_code=normalize_referral_code(referred_by_code) if referred_by_code else None,
    )
    await users.create(record)
    count = await population.increment()
    logger.info(
        "user_registered",
        user_id=user_id,
        referral_code=record.referral_code,
        referred_by_code=record.referred_by_code,
        population=count,
    )
    return record


async def get_user(users: UserStore, user_id: str) -> UserRecord:
    """
    Fetch a user.

    Raises:
        UserNotFoundError: If the user does not exist.
    """
    record = await users.get(user_id)
    if record is None:
        raise UserNotFoundError(user_id)
    return record

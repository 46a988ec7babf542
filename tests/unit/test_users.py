"""User registration, referral codes and the population counter."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from conftest import add_user

from mining_rewards.errors import UserNotFoundError
from mining_rewards.users.referral_codes import (
    REFERRAL_CHARSET,
    REFERRAL_CODE_LENGTH,
    generate_referral_code,
    generate_unique_referral_code,
    normalize_referral_code,
)
from mining_rewards.users.service import get_user, register_user


class TestReferralCodes:
    def test_format(self):
        code = generate_referral_code()
        assert len(code) == REFERRAL_CODE_LENGTH
        assert all(c in REFERRAL_CHARSET for c in code)

    def test_normalize(self):
        assert normalize_referral_code("  ab12cd ") == "AB12CD"

    async def test_unique_code_skips_taken(self, stores, monkeypatch):
        await add_user(stores, "u1", code="TAKEN000")
        codes = iter(["TAKEN000", "FREE0000"])
        monkeypatch.setattr("mining_rewards.users.referral_codes.generate_referral_code", lambda: next(codes))
        assert await generate_unique_referral_code(stores.users) == "FREE0000"

    async def test_gives_up_after_collisions(self):
        users = AsyncMock()
        users.referral_code_exists.return_value = True
        with pytest.raises(RuntimeError):
            await generate_unique_referral_code(users)


class TestRegisterUser:
    async def test_registers_and_counts(self, stores):
        before = await stores.population.get()

        user = await register_user(stores.users, stores.population, "u1", referred_by_code=" alice ")

        assert user.referred_by_code == "ALICE"
        assert len(user.referral_code) == REFERRAL_CODE_LENGTH
        assert user.balance == Decimal("0")
        assert await stores.population.get() == before + 1
        assert (await stores.users.get("u1")).referral_code == user.referral_code

    async def test_duplicate_rejected_without_counting(self, stores):
        await register_user(stores.users, stores.population, "u1")
        count = await stores.population.get()
        with pytest.raises(ValueError):
            await register_user(stores.users, stores.population, "u1")
        assert await stores.population.get() == count

    async def test_get_user(self, stores):
        await add_user(stores, "u1")
        assert (await get_user(stores.users, "u1")).id == "u1"
        with pytest.raises(UserNotFoundError):
            await get_user(stores.users, "missing")


class TestMemoryUserStore:
    async def test_increment_accumulates(self, stores):
        await add_user(stores, "u1")
        await stores.users.conditional_increment("u1", "balance", Decimal("1.500"))
        assert await stores.users.conditional_increment("u1", "balance", Decimal("2.250")) == Decimal("3.750")

    async def test_increment_missing_user(self, stores):
        with pytest.raises(UserNotFoundError):
            await stores.users.conditional_increment("ghost", "balance", Decimal("1"))

    async def test_increment_unknown_field(self, stores):
        await add_user(stores, "u1")
        with pytest.raises(ValueError):
            await stores.users.conditional_increment("u1", "referral_code", Decimal("1"))

"""Referral index: users whose referred-by code equals a given code."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mining_rewards.db.models import User
from mining_rewards.referrals.pagination import apply_cursor, slice_page

MAX_PAGE_SIZE = 1000


class SqlReferralIndex:
    """Paged lookup on ``users.referred_by_code``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_by_referral_code(
        self,
        code: str,
        page_token: str | None = None,
        limit: int = 100,
    ) -> tuple[list[str], str | None]:
        """Fetch one page of referred user ids.

        Returns:
            Tuple of (user ids, next page token or None).
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = (
            select(User.id)
            .where(User.referred_by_code == code)
            .order_by(User.id.asc())
        )
        query = apply_cursor(query, User.id, page_token)
        # Fetch one extra to detect has_more
        query = query.limit(limit + 1)

        async with self._session_factory() as db:
            result = await db.execute(query)
            ids = list(result.scalars().all())

        return slice_page(ids, limit)

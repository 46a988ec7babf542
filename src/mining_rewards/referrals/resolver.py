"""Referral graph resolution for the social reward multiplier.

Given a referral code and a session window, find every user referred by
that code and the subset whose most recent session started inside the
window. The referred set is unbounded, so it is streamed page by page from
the referral index; the per-user session lookups run in fixed-width
batches (concurrent within a batch, batches one after another) so a large
referral tree cannot fan out unbounded requests against the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime

from mining_rewards.mining.stores import ReferralIndex, SessionStore
from mining_rewards.time_utils import to_utc

logger = logging.getLogger(__name__)

DEFAULT_BATCH_WIDTH = 20
DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class ReferralActivity:
    invited_user_ids: list[str] = field(default_factory=list)
    active_user_ids: list[str] = field(default_factory=list)


async def iter_referred_users(
    index: ReferralIndex,
    code: str,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> AsyncIterator[str]:
    """Yield each referred user id once, following page tokens to the end."""
    seen: set[str] = set()
    page_token: str | None = None
    while True:
        user_ids, page_token = await index.list_by_referral_code(code, page_token, page_size)
        for user_id in user_ids:
            if user_id and user_id not in seen:
                seen.add(user_id)
                yield user_id
        if not page_token:
            return


class ReferralGraphResolver:
    def __init__(
        self,
        index: ReferralIndex,
        sessions: SessionStore,
        batch_width: int = DEFAULT_BATCH_WIDTH,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if batch_width < 1:
            msg = "batch_width must be at least 1"
            raise ValueError(msg)
        self._index = index
        self._sessions = sessions
        self._batch_width = batch_width
        self._page_size = page_size

    async def list_invited(self, code: str) -> list[str]:
        return [user_id async for user_id in iter_referred_users(self._index, code, self._page_size)]

    async def resolve(self, code: str | None, start: datetime, end: datetime) -> ReferralActivity:
        """Referred users of ``code`` and those active in ``[start, end]``."""
        if not code:
            return ReferralActivity()

        window_start, window_end = to_utc(start), to_utc(end)
        invited: list[str] = []
        active: list[str] = []
        batch: list[str] = []
        async for user_id in iter_referred_users(self._index, code, self._page_size):
            invited.append(user_id)
            batch.append(user_id)
            if len(batch) == self._batch_width:
                active.extend(await self._active_in_batch(batch, window_start, window_end))
                batch = []
        if batch:
            active.extend(await self._active_in_batch(batch, window_start, window_end))

        if not invited:
            return ReferralActivity()

        logger.info(
            "Referral stats for %s: %d invited, %d active in [%s, %s]",
            code, len(invited), len(active), window_start.isoformat(), window_end.isoformat(),
        )
        return ReferralActivity(invited_user_ids=invited, active_user_ids=active)

    async def _active_in_batch(self, batch: list[str], start: datetime, end: datetime) -> list[str]:
        flags = await asyncio.gather(*(self._active_in_window(user_id, start, end) for user_id in batch))
        return [user_id for user_id, is_active in zip(batch, flags) if is_active]

    async def _active_in_window(self, user_id: str, start: datetime, end: datetime) -> bool:
        latest = await self._sessions.latest_start(user_id)
        if latest is None:
            return False
        return start <= to_utc(latest) <= end

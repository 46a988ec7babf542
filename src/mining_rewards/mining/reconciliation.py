"""Surfacing rewards that were computed but never credited.

A session is marked COMPLETED before its reward is added to the balance,
and the two writes touch different rows. If the balance write fails the
session stays COMPLETED and the completion is never retried (a retry would
risk paying twice). Such cases are reported here for manual reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

import redis.asyncio as aioredis

from mining_rewards.redis_client import publish_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UncreditedReward:
    session_id: str
    user_id: str
    reward: Decimal
    error: str
    detected_at: datetime


class ReconciliationSink(Protocol):
    async def report(self, entry: UncreditedReward) -> None: ...


class RedisReconciliationSink:
    """Appends entries to a Redis stream read by reconciliation tooling."""

    def __init__(self, redis_client: aioredis.Redis, stream: str) -> None:
        self._redis = redis_client
        self._stream = stream

    async def report(self, entry: UncreditedReward) -> None:
        await publish_event(self._redis, self._stream, "reward_uncredited", asdict(entry))


class MemoryReconciliationSink:
    def __init__(self) -> None:
        self.entries: list[UncreditedReward] = []

    async def report(self, entry: UncreditedReward) -> None:
        self.entries.append(entry)

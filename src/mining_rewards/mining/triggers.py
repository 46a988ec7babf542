"""Deferred one-shot completion triggers.

The scheduler only sees the :class:`TriggerScheduler` protocol. Two
backends exist:

- :class:`ArqTriggerScheduler` enqueues a deferred arq job. The job id is
  derived from the session id and arq refuses to enqueue a second job with
  an id it already holds, so re-arming a session never yields two live
  triggers.
- :class:`InlineTriggerScheduler` arms in-process event-loop timers keyed
  the same way. It is for local runs and tests; timers die with the process.
  A key is released when its callback finishes, successfully or not. The
  scheduler never re-arms a COMPLETED session, so only failed completions
  can be armed again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from arq.connections import ArqRedis
from redis.exceptions import RedisError

from mining_rewards.errors import TriggerError
from mining_rewards.mining.schemas import CompletionPayload

logger = logging.getLogger(__name__)

COMPLETION_JOB = "complete_mining_session"


def trigger_key(session_id: str) -> str:
    return f"complete:{session_id}"


@dataclass(frozen=True)
class TriggerHandle:
    key: str
    fire_at: datetime
    created: bool  # False when an identical trigger was already armed


class TriggerScheduler(Protocol):
    async def schedule(self, at: datetime, payload: CompletionPayload) -> TriggerHandle: ...


class ArqTriggerScheduler:
    """Deferred arq job per session."""

    def __init__(self, pool: ArqRedis) -> None:
        self._pool = pool

    async def schedule(self, at: datetime, payload: CompletionPayload) -> TriggerHandle:
        key = trigger_key(payload.session_id)
        try:
            job = await self._pool.enqueue_job(
                COMPLETION_JOB,
                payload.session_id,
                payload.user_id,
                _job_id=key,
                _defer_until=at,
            )
        except (RedisError, OSError) as e:
            msg = f"Failed to arm completion trigger {key}"
            raise TriggerError(msg) from e

        if job is None:
            logger.info("Completion trigger %s already armed", key)
        else:
            logger.info("Armed completion trigger %s for %s", key, at.isoformat())
        return TriggerHandle(key=key, fire_at=at, created=job is not None)


class InlineTriggerScheduler:
    """Event-loop timers that call ``callback(payload)`` at the fire time."""

    def __init__(self, callback: Callable[[CompletionPayload], Awaitable[object]]) -> None:
        self._callback = callback
        self._armed: dict[str, asyncio.TimerHandle | None] = {}
        self._running: set[asyncio.Task[None]] = set()

    async def schedule(self, at: datetime, payload: CompletionPayload) -> TriggerHandle:
        key = trigger_key(payload.session_id)
        if key in self._armed:
            logger.info("Completion trigger %s already armed", key)
            return TriggerHandle(key=key, fire_at=at, created=False)

        delay = max(0.0, (at - datetime.now(timezone.utc)).total_seconds())
        loop = asyncio.get_running_loop()
        self._armed[key] = loop.call_later(delay, self._fire, key, payload)
        logger.info("Armed inline completion trigger %s in %.1fs", key, delay)
        return TriggerHandle(key=key, fire_at=at, created=True)

    @property
    def pending(self) -> int:
        """Timers armed but not yet fired."""
        return sum(1 for handle in self._armed.values() if handle is not None)

    @property
    def tracked(self) -> int:
        """Keys held: unfired timers plus callbacks still running."""
        return len(self._armed)

    def _fire(self, key: str, payload: CompletionPayload) -> None:
        # Key stays until the callback finishes so a duplicate cannot re-arm mid-run.
        self._armed[key] = None
        task = asyncio.get_running_loop().create_task(self._run(key, payload))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: str, payload: CompletionPayload) -> None:
        try:
            await self._callback(payload)
        except Exception:
            logger.exception("Completion trigger %s failed", key)
        finally:
            self._armed.pop(key, None)

    async def drain(self) -> None:
        """Wait for every fired trigger's callback to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel unfired timers and wait for running callbacks."""
        for key, handle in list(self._armed.items()):
            if handle is not None:
                handle.cancel()
                del self._armed[key]
        await self.drain()

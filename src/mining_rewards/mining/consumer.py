"""Redis Stream consumer for session-creation notifications.

Reads ``mining:session_created`` with XREADGROUP under a consumer group
and hands each event to the :class:`SessionScheduler`. Delivery is
at-least-once: a message is acknowledged only once it has been scheduled
or is known to be unprocessable. Anything else (bad configuration, a
trigger that failed to arm, a store outage) stays in the pending list and
is re-claimed with XAUTOCLAIM after ``claim_idle_ms``.
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError

from mining_rewards.errors import ConfigurationError, SessionNotFoundError, TriggerError
from mining_rewards.mining.scheduler import SessionScheduler
from mining_rewards.mining.schemas import SessionCreatedEvent
from mining_rewards.redis_client import decode_event

logger = logging.getLogger(__name__)


class SessionEventConsumer:
    """Processes session-creation events from a Redis Stream."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        scheduler: SessionScheduler,
        stream: str = "mining:session_created",
        group: str = "session-schedulers",
        consumer_name: str = "scheduler-1",
        claim_idle_ms: int = 60_000,
    ) -> None:
        self.redis = redis_client
        self.scheduler = scheduler
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self.claim_idle_ms = claim_idle_ms
        self._running = False
        self._processed = 0
        self._errors = 0

    async def setup_group(self) -> None:
        """Create the consumer group (idempotent)."""
        try:
            await self.redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("Created consumer group %s for %s", self.group, self.stream)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def consume(self, count: int = 100, block_ms: int = 5000) -> int:
        """Read and process a batch of new events.

        Returns:
            Number of events acknowledged.
        """
        try:
            events = await self.redis.xreadgroup(
                groupname=self.group,
                consumername=self.consumer_name,
                streams={self.stream: ">"},
                count=count,
                block=block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return 0

        acked = 0
        for _stream_name, messages in events or []:
            for msg_id, fields in messages:
                if await self.handle(msg_id, fields):
                    acked += 1
        return acked

    async def claim_stale(self, count: int = 100) -> int:
        """Re-process events another delivery left unacknowledged.

        Returns:
            Number of re-claimed events acknowledged.
        """
        try:
            result = await self.redis.xautoclaim(
                self.stream,
                self.group,
                self.consumer_name,
                min_idle_time=self.claim_idle_ms,
                start_id="0-0",
                count=count,
            )
        except aioredis.ResponseError as e:
            logger.error("XAUTOCLAIM error: %s", e)
            return 0

        messages = result[1] if len(result) > 1 else []
        acked = 0
        for msg_id, fields in messages:
            if fields is None:
                # Entry trimmed from the stream while pending.
                await self.redis.xack(self.stream, self.group, msg_id)
                continue
            logger.info("Re-claimed pending session event %s", msg_id)
            if await self.handle(msg_id, fields):
                acked += 1
        return acked

    async def handle(self, msg_id: str, fields: dict[str, str]) -> bool:
        """Schedule one event. Returns True if the message was acknowledged."""
        try:
            event = SessionCreatedEvent.model_validate(decode_event(fields))
        except (ValueError, ValidationError):
            logger.exception("Dropping malformed session event %s: %r", msg_id, fields)
            await self.redis.xack(self.stream, self.group, msg_id)
            self._errors += 1
            return True

        try:
            result = await self.scheduler.schedule(event)
        except SessionNotFoundError:
            logger.warning("Session %s from event %s not found; dropping", event.session_id, msg_id)
            await self.redis.xack(self.stream, self.group, msg_id)
            self._errors += 1
            return True
        except ConfigurationError:
            logger.exception("Configuration error scheduling session %s; left pending", event.session_id)
            self._errors += 1
            return False
        except TriggerError:
            logger.exception("Could not arm trigger for session %s; left pending for retry", event.session_id)
            self._errors += 1
            return False
        except Exception:
            logger.exception("Error scheduling session %s from %s; left pending", event.session_id, msg_id)
            self._errors += 1
            return False

        await self.redis.xack(self.stream, self.group, msg_id)
        self._processed += 1
        logger.info(
            "Session %s %s (end=%s, new trigger=%s)",
            result.session_id, result.status,
            result.end_at.isoformat() if result.end_at else None, result.armed,
        )
        return True

    async def run(self, claim_every: int = 12) -> None:
        """Read new events until stopped, re-claiming stale ones every few rounds."""
        await self.setup_group()
        self._running = True
        logger.info("Session event consumer started (consumer=%s)", self.consumer_name)

        rounds = 0
        while self._running:
            try:
                await self.consume()
                rounds += 1
                if rounds % claim_every == 0:
                    await self.claim_stale()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

    def stop(self) -> None:
        """Signal the consumer to stop."""
        self._running = False

    @property
    def stats(self) -> dict[str, int]:
        return {"processed": self._processed, "errors": self._errors}

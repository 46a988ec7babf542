"""Mining session API business logic."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as aioredis

from mining_rewards.dependencies import Stores
from mining_rewards.errors import SessionNotFoundError, UserNotFoundError
from mining_rewards.mining.records import SessionRecord
from mining_rewards.mining.schemas import CreateSessionRequest, SessionCreatedEvent, SessionResponse
from mining_rewards.redis_client import publish_event
from mining_rewards.time_utils import to_utc

logger = logging.getLogger(__name__)


class SessionEventPublisher(Protocol):
    async def publish(self, event: SessionCreatedEvent) -> None: ...


class RedisSessionEventPublisher:
    """Publishes creation notifications to the session events stream."""

    def __init__(self, redis_client: aioredis.Redis, stream: str) -> None:
        self._redis = redis_client
        self._stream = stream

    async def publish(self, event: SessionCreatedEvent) -> None:
        await publish_event(
            self._redis,
            self._stream,
            "session_created",
            event.model_dump(by_alias=True, mode="json"),
        )


def to_response(record: SessionRecord) -> SessionResponse:
    return SessionResponse(
        session_id=record.id,
        user_id=record.user_id,
        state=record.state,
        start_at=record.start_at,
        end_at=record.end_at,
        reward_distributed_at=record.reward_distributed_at,
    )


async def create_session(
    stores: Stores,
    publisher: SessionEventPublisher,
    request: CreateSessionRequest,
) -> SessionResponse:
    """Create a PENDING session and emit its creation notification.

    Raises:
        UserNotFoundError: The user does not exist.
    """
    if await stores.users.get(request.user_id) is None:
        raise UserNotFoundError(request.user_id)

    record = SessionRecord(
        id=request.session_id or uuid.uuid4().hex,
        user_id=request.user_id,
        start_at=to_utc(request.start_at) if request.start_at else datetime.now(timezone.utc),
    )
    await stores.sessions.create(record)
    await publisher.publish(SessionCreatedEvent(
        session_id=record.id,
        user_id=record.user_id,
        start_instant=record.start_at,
    ))
    logger.info("Created mining session %s for user %s", record.id, record.user_id)
    return to_response(record)


async def get_session_detail(stores: Stores, session_id: str) -> SessionResponse:
    """
    Fetch a session by id.

    Raises:
        SessionNotFoundError: If it does not exist.
    """
    record = await stores.sessions.get(session_id)
    if record is None:
        raise SessionNotFoundError(session_id)
    return to_response(record)

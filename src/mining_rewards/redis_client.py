"""Redis connection pool and stream helpers."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis

_pool: redis.Redis | None = None

# Cap per stream so an idle consumer group cannot grow memory without bound.
STREAM_MAXLEN = 100_000


async def init_redis(url: str) -> redis.Redis:
    """Initialize the shared Redis client and return it."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    return _pool


async def close_redis() -> None:
    """Close the shared Redis client."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client (FastAPI dependency)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


async def publish_event(client: redis.Redis, stream: str, event: str, data: dict[str, Any]) -> str:
    """Append an event to a stream as ``{"event": ..., "data": <json>}``.

    Returns the stream entry id.
    """
    return await client.xadd(
        stream,
        {"event": event, "data": json.dumps(data, default=str)},
        maxlen=STREAM_MAXLEN,
        approximate=True,
    )


def decode_event(fields: dict[str, str]) -> dict[str, Any]:
    """Parse a stream entry written by :func:`publish_event`.

    Entries without a ``data`` field are returned as a flat dict.

    Raises:
        ValueError: If the ``data`` field is not a JSON object.
    """
    raw = fields.get("data")
    if raw is None:
        return dict(fields)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        msg = f"Malformed event payload: {raw!r}"
        raise ValueError(msg) from e
    if not isinstance(parsed, dict):
        msg = f"Event payload is not an object: {raw!r}"
        raise ValueError(msg)
    return parsed

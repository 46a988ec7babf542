"""Cursor-based pagination for the referral index.

Keyset pagination on ``users.id`` (not OFFSET), so concurrent registrations
never shift a page boundary and no user appears on two pages. The cursor
encodes the last id of a page as base64 JSON.
"""

from __future__ import annotations

import base64
import json

from sqlalchemy import Select


def encode_cursor(last_id: str) -> str:
    """Encode a page token from the last user id on a page."""
    payload = {"after": last_id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(cursor: str) -> str:
    """Decode a page token into the user id to continue after.

    Raises:
        ValueError: If cursor is malformed.
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode())
        data = json.loads(raw)
        if not isinstance(data, dict) or "after" not in data:
            msg = "Missing 'after' in cursor"
            raise ValueError(msg)
        return str(data["after"])
    except Exception as e:
        msg = f"Invalid cursor: {e}"
        raise ValueError(msg) from e


def apply_cursor(query: Select, column: object, cursor: str | None) -> Select:  # type: ignore[type-arg]
    """Restrict an id-ascending query to rows after the cursor position."""
    if cursor is None:
        return query
    return query.where(column > decode_cursor(cursor))  # type: ignore[operator]


def slice_page(ids: list[str], limit: int) -> tuple[list[str], str | None]:
    """Split a ``limit + 1`` fetch into (page, next_cursor)."""
    has_more = len(ids) > limit
    items = ids[:limit]
    next_cursor = encode_cursor(items[-1]) if has_more and items else None
    return items, next_cursor

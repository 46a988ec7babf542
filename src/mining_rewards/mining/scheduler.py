"""Session scheduling: PENDING -> ACTIVE and arming the completion trigger.

Safe to run any number of times for the same session. The end instant is
computed once, persisted with a conditional PENDING -> ACTIVE transition,
and every later run reuses the persisted value, so duplicate creation
notifications re-arm the trigger with identical parameters (which the
trigger backend dedups by session id).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from mining_rewards.config import Settings
from mining_rewards.db.models import SessionState
from mining_rewards.errors import ConfigurationError, SessionNotFoundError
from mining_rewards.mining.records import SessionRecord
from mining_rewards.mining.schemas import CompletionPayload, SessionCreatedEvent
from mining_rewards.mining.stores import SessionStore
from mining_rewards.mining.triggers import TriggerScheduler
from mining_rewards.time_utils import to_utc

logger = logging.getLogger(__name__)


def compute_end(start: datetime, duration_minutes: float) -> datetime:
    """``start + duration`` in UTC, truncated to the whole minute.

    Raises:
        ConfigurationError: The end instant falls outside the datetime range.
    """
    try:
        end = to_utc(start) + timedelta(minutes=duration_minutes)
    except OverflowError as e:
        msg = f"Session duration of {duration_minutes} minutes from {start.isoformat()} is out of range"
        raise ConfigurationError(msg) from e
    return end.replace(second=0, microsecond=0)


@dataclass(frozen=True)
class ScheduleResult:
    session_id: str
    status: str  # "scheduled" | "rearmed" | "already_completed"
    end_at: datetime | None = None
    armed: bool = False


class SessionScheduler:
    def __init__(self, settings: Settings, sessions: SessionStore, triggers: TriggerScheduler) -> None:
        self._settings = settings
        self._sessions = sessions
        self._triggers = triggers

    async def schedule(self, event: SessionCreatedEvent) -> ScheduleResult:
        """Persist the session's end instant and arm its completion trigger.

        Raises:
            ConfigurationError: Duration missing or invalid. Nothing is written.
            SessionNotFoundError: The session does not exist.
            TriggerError: Arming failed; retry the whole call.
        """
        # Fail closed before any write.
        duration = self._settings.session_duration()

        session = await self._sessions.get(event.session_id)
        if session is None:
            raise SessionNotFoundError(event.session_id)

        if session.state == SessionState.COMPLETED:
            logger.info("Session %s already completed, nothing to schedule", session.id)
            return ScheduleResult(session_id=session.id, status="already_completed", end_at=session.end_at)

        if session.user_id != event.user_id:
            logger.warning(
                "Creation event user %s does not match session %s owner %s",
                event.user_id, session.id, session.user_id,
            )

        status = "rearmed"
        if session.state == SessionState.PENDING:
            # The stored start is authoritative over the event copy.
            end_at = compute_end(session.start_at, duration)
            updated = await self._sessions.conditional_update(
                session.id, SessionState.PENDING, SessionState.ACTIVE, {"end_at": end_at},
            )
            if updated is not None:
                session = updated
                status = "scheduled"
                logger.info("Session %s active until %s", session.id, end_at.isoformat())
            else:
                # Lost the race to a duplicate; use whatever it persisted.
                session = await self._reload(session.id)
                if session.state == SessionState.COMPLETED:
                    return ScheduleResult(session_id=session.id, status="already_completed", end_at=session.end_at)

        return await self._arm(session, status)

    async def rearm(self, session: SessionRecord) -> ScheduleResult:
        """Re-arm the trigger for an ACTIVE session using its persisted end."""
        if session.state != SessionState.ACTIVE:
            msg = f"Session {session.id} is {session.state.value}, not ACTIVE"
            raise ValueError(msg)
        return await self._arm(session, "rearmed")

    async def _arm(self, session: SessionRecord, status: str) -> ScheduleResult:
        if session.end_at is None:
            msg = f"Session {session.id} is ACTIVE without an end instant"
            raise RuntimeError(msg)
        handle = await self._triggers.schedule(
            session.end_at,
            CompletionPayload(session_id=session.id, user_id=session.user_id),
        )
        return ScheduleResult(
            session_id=session.id,
            status=status,
            end_at=session.end_at,
            armed=handle.created,
        )

    async def _reload(self, session_id: str) -> SessionRecord:
        session = await self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

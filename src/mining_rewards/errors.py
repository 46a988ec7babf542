"""Exception types shared by the session lifecycle components."""

from __future__ import annotations


class MiningRewardsError(Exception):
    """Base class for all service errors."""


class ConfigurationError(MiningRewardsError):
    """Required configuration is missing or invalid."""


class SessionNotFoundError(MiningRewardsError):
    """A mining session referenced by an event does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Mining session not found: {session_id}")
        self.session_id = session_id


class UserNotFoundError(MiningRewardsError):
    """A user referenced by a session or request does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class TriggerError(MiningRewardsError):
    """Arming the deferred completion trigger failed."""

"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mining_rewards.config import Settings, get_settings
from mining_rewards.dependencies import Stores, build_completion_handler, build_memory_stores, build_scheduler
from mining_rewards.errors import TriggerError
from mining_rewards.main import create_app
from mining_rewards.mining.completion import CompletionHandler
from mining_rewards.mining.reconciliation import MemoryReconciliationSink
from mining_rewards.mining.records import SessionRecord, UserRecord
from mining_rewards.mining.scheduler import SessionScheduler
from mining_rewards.mining.schemas import CompletionPayload, SessionCreatedEvent
from mining_rewards.mining.triggers import TriggerHandle, trigger_key

T0 = datetime(2026, 3, 10, 9, 30, 15, tzinfo=timezone.utc)


class RecordingTriggers:
    """Trigger backend that records arm requests and dedups by session."""

    def __init__(self) -> None:
        self.armed: dict[str, tuple[datetime, CompletionPayload]] = {}
        self.calls: list[tuple[datetime, CompletionPayload]] = []
        self.fail_next = 0

    async def schedule(self, at: datetime, payload: CompletionPayload) -> TriggerHandle:
        self.calls.append((at, payload))
        if self.fail_next:
            self.fail_next -= 1
            msg = "scheduler unavailable"
            raise TriggerError(msg)
        key = trigger_key(payload.session_id)
        created = key not in self.armed
        if created:
            self.armed[key] = (at, payload)
        return TriggerHandle(key=key, fire_at=at, created=created)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(session_duration_minutes="24 * 60", log_format="console")


@pytest.fixture
def stores() -> Stores:
    return build_memory_stores(population=5_000)


@pytest.fixture
def reconciliation() -> MemoryReconciliationSink:
    return MemoryReconciliationSink()


@pytest.fixture
def handler(settings: Settings, stores: Stores, reconciliation: MemoryReconciliationSink) -> CompletionHandler:
    return build_completion_handler(settings, stores, reconciliation)


@pytest.fixture
def triggers() -> RecordingTriggers:
    return RecordingTriggers()


@pytest.fixture
def scheduler(settings: Settings, stores: Stores, triggers: RecordingTriggers) -> SessionScheduler:
    return build_scheduler(settings, stores, triggers)


async def add_user(stores: Stores, user_id: str, code: str | None = None, referred_by: str | None = None) -> UserRecord:
    return await stores.users.create(UserRecord(id=user_id, referral_code=code, referred_by_code=referred_by))


async def add_session(stores: Stores, session_id: str, user_id: str, start_at: datetime = T0, **fields: object) -> SessionRecord:
    return await stores.sessions.create(SessionRecord(id=session_id, user_id=user_id, start_at=start_at, **fields))  # type: ignore[arg-type]


class CollectingPublisher:
    def __init__(self) -> None:
        self.events: list[SessionCreatedEvent] = []

    async def publish(self, event: SessionCreatedEvent) -> None:
        self.events.append(event)


@pytest.fixture
def api_stores() -> Stores:
    return build_memory_stores(population=5_000)


@pytest.fixture
def publisher() -> CollectingPublisher:
    return CollectingPublisher()


@pytest_asyncio.fixture
async def client(api_stores: Stores, publisher: CollectingPublisher) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app wired to in-memory stores."""
    app = create_app()
    app.state.stores = api_stores
    app.state.event_publisher = publisher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

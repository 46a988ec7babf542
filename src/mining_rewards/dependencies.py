"""Component wiring shared by the API, the session runner and the arq worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mining_rewards.config import Settings
from mining_rewards.mining.completion import CompletionHandler
from mining_rewards.mining.memory import (
    MemoryPopulationCounter,
    MemoryReferralIndex,
    MemorySessionStore,
    MemoryUserStore,
)
from mining_rewards.mining.reconciliation import ReconciliationSink
from mining_rewards.mining.scheduler import SessionScheduler
from mining_rewards.mining.stores import (
    PopulationCounter,
    ReferralIndex,
    SessionStore,
    SqlPopulationCounter,
    SqlSessionStore,
    SqlUserStore,
    UserStore,
)
from mining_rewards.mining.streak import StreakEvaluator
from mining_rewards.mining.triggers import TriggerScheduler
from mining_rewards.referrals.index import SqlReferralIndex
from mining_rewards.referrals.resolver import ReferralGraphResolver

if TYPE_CHECKING:
    from mining_rewards.mining.service import SessionEventPublisher


@dataclass
class Stores:
    sessions: SessionStore
    users: UserStore
    population: PopulationCounter
    referrals: ReferralIndex


def build_sql_stores(session_factory: async_sessionmaker[AsyncSession]) -> Stores:
    return Stores(
        sessions=SqlSessionStore(session_factory),
        users=SqlUserStore(session_factory),
        population=SqlPopulationCounter(session_factory),
        referrals=SqlReferralIndex(session_factory),
    )


def build_memory_stores(population: int = 0) -> Stores:
    users = MemoryUserStore()
    return Stores(
        sessions=MemorySessionStore(),
        users=users,
        population=MemoryPopulationCounter(population),
        referrals=MemoryReferralIndex(users),
    )


def build_resolver(settings: Settings, stores: Stores) -> ReferralGraphResolver:
    return ReferralGraphResolver(
        stores.referrals,
        stores.sessions,
        batch_width=settings.referral_batch_width,
        page_size=settings.referral_page_size,
    )


def build_completion_handler(
    settings: Settings,
    stores: Stores,
    reconciliation: ReconciliationSink,
) -> CompletionHandler:
    return CompletionHandler(
        sessions=stores.sessions,
        users=stores.users,
        population=stores.population,
        resolver=build_resolver(settings, stores),
        streaks=StreakEvaluator(stores.sessions),
        reconciliation=reconciliation,
        referral_cap=settings.referral_bonus_cap,
    )


def build_scheduler(settings: Settings, stores: Stores, triggers: TriggerScheduler) -> SessionScheduler:
    return SessionScheduler(settings, stores.sessions, triggers)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_stores(request: Request) -> Stores:
    """Stores attached to the app during startup."""
    return request.app.state.stores


def get_event_publisher(request: Request) -> SessionEventPublisher:
    """Session-creation event publisher attached during startup."""
    return request.app.state.event_publisher

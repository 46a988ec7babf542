"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mining_rewards.config import get_settings
from mining_rewards.database import close_db, init_db
from mining_rewards.dependencies import build_sql_stores
from mining_rewards.health.router import router as health_router
from mining_rewards.middleware import setup_middleware
from mining_rewards.mining.router import router as mining_router
from mining_rewards.mining.service import RedisSessionEventPublisher
from mining_rewards.redis_client import close_redis, init_redis
from mining_rewards.referrals.router import router as referrals_router
from mining_rewards.users.router import router as users_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    session_factory = await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    redis_client = await init_redis(settings.redis_url)

    app.state.stores = build_sql_stores(session_factory)
    app.state.event_publisher = RedisSessionEventPublisher(redis_client, settings.session_events_stream)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Mining Rewards API",
        description="Mining session lifecycle and reward distribution",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(mining_router)
    app.include_router(referrals_router)

    return app


app = create_app()

"""arq worker running deferred session completions.

Each session has at most one live ``complete_mining_session`` job, keyed
``complete:<session_id>`` and deferred until the session's end instant.
A periodic sweep re-schedules sessions whose creation notification or
completion job was lost.

Usage: arq mining_rewards.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from arq import Retry, cron
from arq.connections import RedisSettings
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import InterfaceError, OperationalError

from mining_rewards.config import get_settings
from mining_rewards.database import close_db, init_db
from mining_rewards.db.models import SessionState
from mining_rewards.dependencies import Stores, build_completion_handler, build_scheduler, build_sql_stores
from mining_rewards.errors import ConfigurationError
from mining_rewards.middleware.logging import setup_logging
from mining_rewards.mining.completion import CompletionHandler
from mining_rewards.mining.reconciliation import RedisReconciliationSink
from mining_rewards.mining.scheduler import SessionScheduler
from mining_rewards.mining.schemas import CompletionPayload, SessionCreatedEvent
from mining_rewards.mining.triggers import ArqTriggerScheduler

logger = logging.getLogger(__name__)

MAX_TRIES = 5
RETRY_BACKOFF_SECONDS = 5
RECOVERY_BATCH = 500

# Failures of the ACTIVE -> COMPLETED transition that are worth retrying.
TRANSIENT_ERRORS = (
    OperationalError,
    InterfaceError,
    RedisConnectionError,
    RedisTimeoutError,
    TimeoutError,
    ConnectionError,
)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Wire stores, the completion handler and the scheduler."""
    settings = get_settings()
    setup_logging(settings)
    session_factory = await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)

    stores = build_sql_stores(session_factory)
    reconciliation = RedisReconciliationSink(ctx["redis"], settings.reconciliation_stream)
    ctx["stores"] = stores
    ctx["completion"] = build_completion_handler(settings, stores, reconciliation)
    ctx["scheduler"] = build_scheduler(settings, stores, ArqTriggerScheduler(ctx["redis"]))
    logger.info("Completion worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Completion worker shut down")


async def complete_mining_session(ctx: dict, session_id: str, user_id: str) -> str:  # type: ignore[type-arg]
    """Deferred trigger target: complete one session and credit its reward."""
    handler: CompletionHandler = ctx["completion"]
    try:
        result = await handler.complete(CompletionPayload(session_id=session_id, user_id=user_id))
    except TRANSIENT_ERRORS as e:
        job_try = ctx.get("job_try", 1)
        logger.warning(
            "Transient error completing session %s (try %d/%d): %s",
            session_id, job_try, MAX_TRIES, e,
        )
        raise Retry(defer=job_try * RETRY_BACKOFF_SECONDS) from e
    return result.status


async def recover_stalled_sessions(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Re-schedule PENDING sessions never picked up and re-arm overdue ACTIVE ones."""
    settings = get_settings()
    stores: Stores = ctx["stores"]
    scheduler: SessionScheduler = ctx["scheduler"]
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.stalled_session_grace_minutes)
    counts = {"scheduled": 0, "rearmed": 0, "failed": 0}

    for session in await stores.sessions.list_overdue(SessionState.PENDING, cutoff, RECOVERY_BATCH):
        event = SessionCreatedEvent(session_id=session.id, user_id=session.user_id, start_instant=session.start_at)
        try:
            await scheduler.schedule(event)
            counts["scheduled"] += 1
        except ConfigurationError:
            logger.exception("Session duration misconfigured; stalled sessions left PENDING")
            counts["failed"] += 1
            break
        except Exception:
            logger.exception("Failed to schedule stalled session %s", session.id)
            counts["failed"] += 1

    for session in await stores.sessions.list_overdue(SessionState.ACTIVE, cutoff, RECOVERY_BATCH):
        try:
            result = await scheduler.rearm(session)
        except Exception:
            logger.exception("Failed to re-arm completion for session %s", session.id)
            counts["failed"] += 1
            continue
        if result.armed:
            counts["rearmed"] += 1

    if any(counts.values()):
        logger.info(
            "Stalled session sweep: scheduled=%d rearmed=%d failed=%d",
            counts["scheduled"], counts["rearmed"], counts["failed"],
        )
    return counts


class WorkerSettings:
    """arq worker settings for session completion."""

    functions = [complete_mining_session]
    cron_jobs = [
        cron(recover_stalled_sessions, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_tries = MAX_TRIES
    max_jobs = 20
    job_timeout = 120

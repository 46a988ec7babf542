"""Standalone runner for the session-creation consumer.

Reads ``mining:session_created`` and schedules each session's completion.
With ``MINING_TRIGGER_BACKEND=arq`` completions are enqueued as deferred
arq jobs for the completion worker; with ``inline`` they run in this
process on event-loop timers.

Usage: python -m mining_rewards.workers.session_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from mining_rewards.config import get_settings
from mining_rewards.database import close_db, init_db
from mining_rewards.dependencies import build_completion_handler, build_scheduler, build_sql_stores
from mining_rewards.middleware.logging import setup_logging
from mining_rewards.mining.consumer import SessionEventConsumer
from mining_rewards.mining.reconciliation import RedisReconciliationSink
from mining_rewards.mining.triggers import ArqTriggerScheduler, InlineTriggerScheduler, TriggerScheduler
from mining_rewards.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the session-creation consumer until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)
    # Refuse to start without a usable session duration.
    settings.session_duration()

    session_factory = await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    redis_client = await init_redis(settings.redis_url)
    stores = build_sql_stores(session_factory)

    arq_pool: ArqRedis | None = None
    inline: InlineTriggerScheduler | None = None
    triggers: TriggerScheduler
    if settings.trigger_backend == "inline":
        reconciliation = RedisReconciliationSink(redis_client, settings.reconciliation_stream)
        handler = build_completion_handler(settings, stores, reconciliation)
        inline = InlineTriggerScheduler(handler.complete)
        triggers = inline
    else:
        arq_pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
        triggers = ArqTriggerScheduler(arq_pool)

    consumer = SessionEventConsumer(
        redis_client=redis_client,
        scheduler=build_scheduler(settings, stores, triggers),
        stream=settings.session_events_stream,
        group=settings.session_consumer_group,
        consumer_name=settings.session_consumer_name,
        claim_idle_ms=settings.event_claim_idle_ms,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    logger.info(
        "Starting session consumer (consumer=%s, triggers=%s)",
        settings.session_consumer_name, settings.trigger_backend,
    )
    try:
        await consumer.run()
    finally:
        if inline is not None:
            await inline.aclose()
        if arq_pool is not None:
            await arq_pool.aclose()
        await close_redis()
        await close_db()
        logger.info("Session consumer stopped (%s)", consumer.stats)


if __name__ == "__main__":
    asyncio.run(main())

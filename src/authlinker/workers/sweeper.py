"""arq worker that reclaims expired link records.

Runs as a separate process so sweeping never competes with issuance:

    arq authlinker.workers.settings.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from authlinker.config import get_settings
from authlinker.database import close_db, get_session_factory, init_db
from authlinker.links.errors import StorageError
from authlinker.links.store import RecordStore
from authlinker.middleware.logging import setup_logging

logger = structlog.get_logger()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database and the record store on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["store"] = RecordStore(get_session_factory())
    logger.info("record_sweeper_started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Dispose of the database engine."""
    ctx.pop("store", None)
    await close_db()
    logger.info("record_sweeper_stopped")


async def sweep_expired_records(ctx: dict) -> int:  # type: ignore[type-arg]
    """Delete records past their deadline. Failures are logged and retried on the next run."""
    store: RecordStore = ctx["store"]
    try:
        removed = await store.sweep_expired()
    except StorageError:
        logger.warning("record_sweep_skipped")
        return 0
    if removed:
        logger.info("expired_records_swept", removed=removed)
    return removed


class WorkerSettings:
    """arq worker settings for the expired-record sweeper."""

    functions = [sweep_expired_records]
    cron_jobs = [
        cron(sweep_expired_records, minute=get_settings().record_sweep_minutes, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 1
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)

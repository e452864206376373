"""FastAPI application factory."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from authlinker.config import Settings, get_settings
from authlinker.database import close_db, get_session_factory, init_db
from authlinker.health.router import router as health_router
from authlinker.links.cooldown import CooldownGuard
from authlinker.links.router import router as links_router
from authlinker.links.service import build_link_service
from authlinker.middleware import setup_middleware
from authlinker.redis_client import close_redis, get_redis, init_redis

logger = structlog.get_logger()


async def sweep_cooldowns(guard: CooldownGuard, interval_seconds: int) -> None:
    """Periodically drop cooldown entries whose window has elapsed."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await guard.sweep()
        except Exception:
            logger.exception("cooldown_sweep_failed")
            continue
        if removed:
            logger.debug("cooldown_entries_swept", removed=removed)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    await init_db(settings.database_url)

    redis = None
    if settings.cooldown_backend == "redis":
        await init_redis(settings.redis_url)
        redis = get_redis()

    service = build_link_service(settings, get_session_factory(), redis)
    app.state.link_service = service
    if settings.codec == "rsa" and not service.key_store.is_loaded():
        logger.warning("rsa_codec_without_keys", key_dir=settings.key_dir)

    sweeper = asyncio.create_task(sweep_cooldowns(service.guard, settings.cooldown_sweep_interval_seconds))

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper

    if settings.cooldown_backend == "memory":
        await service.guard.clear()
    app.state.link_service = None

    await close_db()
    if redis is not None:
        await close_redis()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="AuthLinker",
        description="Issues single-use authentication links for in-session subjects",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(links_router)

    return app


app = create_app()

"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from authlinker.database import get_session
from authlinker.links.dependencies import get_app_settings
from authlinker.redis_client import redis_status

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe over the database, the Redis cooldown cache (when used) and RSA keys (in rsa mode)."""
    checks: dict[str, object] = {}

    # Database
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:  # noqa: BLE001
        checks["database"] = f"error: {exc}"

    settings = get_app_settings(request)
    if settings.cooldown_backend == "redis":
        checks["redis"] = await redis_status()

    service = getattr(request.app.state, "link_service", None)
    if settings.codec == "rsa":
        checks["rsa_keys"] = "ok" if service is not None and service.key_store.is_loaded() else "error: not loaded"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version(request: Request) -> dict[str, str]:
    """Return service version and environment."""
    settings = get_app_settings(request)
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }

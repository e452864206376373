"""FastAPI dependencies for the link service."""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Request

from authlinker.config import Settings, get_settings
from authlinker.links.service import LinkService


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with (falls back to the cached env settings)."""
    settings: Settings | None = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_link_service(request: Request) -> LinkService:
    """The LinkService built during app startup."""
    service: LinkService | None = getattr(request.app.state, "link_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Link service not initialized")
    return service


async def require_service_key(
    request: Request,
    x_service_key: str | None = Header(default=None),
) -> None:
    """
    Check the shared host key when one is configured.

    Raises 401 on a missing or wrong key.
    """
    expected = get_app_settings(request).service_api_key
    if not expected:
        return
    if x_service_key is None or not secrets.compare_digest(x_service_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid service key")

"""Link service router: issuance and key administration under /api/v1.

Typed LinkError failures propagate to the error handlers in
``authlinker.middleware.error_handler``, which map them onto HTTP statuses.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException

from authlinker.db.models import AuthRecord
from authlinker.links.dependencies import get_link_service, require_service_key
from authlinker.links.errors import StorageError
from authlinker.links.schemas import (
    InfoResponse,
    IssueLinkRequest,
    IssueLinkResponse,
    KeygenResponse,
    PublicKeyResponse,
)
from authlinker.links.service import LinkService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Links"], dependencies=[Depends(require_service_key)])


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


@router.post("/links", response_model=IssueLinkResponse, status_code=201)
async def issue_link(
    body: IssueLinkRequest,
    service: LinkService = Depends(get_link_service),  # noqa: B008
) -> IssueLinkResponse:
    """Issue a single-use link for a subject and action."""
    result = await service.issuer.issue(body.subject_id, body.action)
    if result.link is None:
        raise result.error or StorageError("Link issuance returned no result")

    issued = result.link
    return IssueLinkResponse(
        link=issued.link,
        record_id=issued.record_id,
        data=issued.data,
        hash=issued.hash,
        token=issued.token,
        expires_at=issued.expires_at,
        superseded_id=issued.superseded_id,
    )


# ---------------------------------------------------------------------------
# Key administration
# ---------------------------------------------------------------------------


@router.post("/keys", response_model=KeygenResponse, status_code=201)
async def generate_keys(service: LinkService = Depends(get_link_service)) -> KeygenResponse:  # noqa: B008
    """Generate and persist a fresh RSA keypair. Pending RSA links become undecodable."""
    key_dir = await asyncio.to_thread(service.key_store.generate)
    public_key = service.key_store.public_key_base64() or ""
    logger.info("rsa_keygen_requested", key_dir=str(key_dir))
    return KeygenResponse(status="keys_generated", key_dir=str(key_dir.resolve()), public_key=public_key)


@router.get("/keys/public", response_model=PublicKeyResponse)
async def public_key(service: LinkService = Depends(get_link_service)) -> PublicKeyResponse:  # noqa: B008
    """Return the active public key (base64 DER)."""
    key = service.key_store.public_key_base64()
    if key is None:
        raise HTTPException(status_code=404, detail={"code": "keys_not_loaded", "message": "No keypair loaded"})
    return PublicKeyResponse(public_key=key)


@router.get("/info", response_model=InfoResponse)
async def info(service: LinkService = Depends(get_link_service)) -> InfoResponse:  # noqa: B008
    """Service version, codec and key status."""
    settings = service.settings
    return InfoResponse(
        version=settings.app_version,
        codec=service.codec.name,
        keys_loaded=service.key_store.is_loaded(),
        table_name=AuthRecord.__tablename__,
        allowed_actions=sorted(service.issuer.allowed_actions),
        cooldown_seconds=settings.cooldown,
        expired_time_seconds=settings.expired_time,
        cooldown_entries=await service.guard.size(),
    )

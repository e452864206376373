"""Request/response schemas for the link service endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class IssueLinkRequest(BaseModel):
    """Ask for a link on behalf of an authenticated subject."""

    subject_id: str = Field(..., min_length=1, max_length=36)
    action: str = Field(..., min_length=1, max_length=32)

    @field_validator("action")
    @classmethod
    def normalize_action(cls, v: str) -> str:
        return v.strip().lower()


class IssueLinkResponse(BaseModel):
    link: str
    record_id: str
    data: str
    hash: str
    token: str | None
    expires_at: datetime
    superseded_id: str | None = None


# ---------------------------------------------------------------------------
# Keys and info
# ---------------------------------------------------------------------------


class KeygenResponse(BaseModel):
    status: str
    key_dir: str
    public_key: str


class PublicKeyResponse(BaseModel):
    public_key: str


class InfoResponse(BaseModel):
    version: str
    codec: str
    keys_loaded: bool
    table_name: str
    allowed_actions: list[str]
    cooldown_seconds: int
    expired_time_seconds: int
    cooldown_entries: int

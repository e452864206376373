"""
Link issuance.

Orchestrates cooldown, token, payload, codec, hash and record store into one
``issue`` call. Expected failures come back as typed errors inside an
IssueResult and are never raised to the caller.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from urllib.parse import quote

import structlog

from authlinker.links.errors import (
    CooldownError,
    InvalidActionError,
    KeysNotLoadedError,
    LinkError,
    StorageError,
)
from authlinker.links.payload import LinkPayload, to_epoch_millis
from authlinker.links.tokens import compute_link_hash, generate_token

if TYPE_CHECKING:
    from authlinker.config import Settings
    from authlinker.links.codecs import Codec
    from authlinker.links.cooldown import CooldownGuard
    from authlinker.links.store import RecordStore

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedLink:
    link: str
    data: str
    token: str
    hash: str
    record_id: str
    expires_at: datetime
    superseded_id: str | None = None


@dataclass(frozen=True)
class IssueResult:
    link: IssuedLink | None = None
    error: LinkError | None = None

    @property
    def ok(self) -> bool:
        return self.link is not None


class LinkIssuer:
    """Issues single-use links for (subject, action) pairs."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        guard: CooldownGuard,
        codec: Codec,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.guard = guard
        self.codec = codec
        self.allowed_actions = frozenset(settings.allowed_actions)
        self.salt = settings.salt
        self.token_length = settings.token_length
        self.endpoint = settings.endpoint
        self.expiry = timedelta(seconds=settings.expired_time)
        self._clock = clock

    async def issue(self, subject_id: str, action: str) -> IssueResult:
        """Issue a new link, superseding any still-active one for the same pair."""
        action = action.strip().lower()
        try:
            link = await self._issue(subject_id, action)
        except LinkError as e:
            logger.info("link_issue_rejected", subject_id=subject_id, action=action, reason=e.code)
            return IssueResult(error=e)
        except Exception as e:  # noqa: BLE001
            logger.error("link_issue_unexpected_error", subject_id=subject_id, action=action, error=str(e), exc_info=e)
            return IssueResult(error=StorageError("Unexpected issuance failure"))
        return IssueResult(link=link)

    async def _issue(self, subject_id: str, action: str) -> IssuedLink:
        if action not in self.allowed_actions:
            raise InvalidActionError(action)

        if not self.codec.is_ready():
            raise KeysNotLoadedError

        await self._check_cooldown(subject_id, action)

        now = self._clock()
        payload = LinkPayload(
            record_id=str(uuid.uuid4()),
            action=action,
            subject_id=subject_id,
            expires_time=to_epoch_millis(now + self.expiry),
        )
        token = generate_token(self.token_length)

        data = self.codec.encode(payload.to_bytes(), to_epoch_millis(now))
        link_hash = compute_link_hash(payload.plain_base64(), token, self.salt)

        superseded_id = await self.store.supersede_and_write(
            record_id=payload.record_id,
            subject_id=subject_id,
            action=action,
            token=token,
            expires_at=payload.expires_at,
            cooldown=self.guard.window,
        )

        await self.guard.record(subject_id, action)

        logger.info(
            "link_issued",
            record_id=payload.record_id,
            subject_id=subject_id,
            action=action,
            codec=self.codec.name,
            superseded_id=superseded_id,
        )
        return IssuedLink(
            link=self._build_link(data, link_hash, token),
            data=data,
            token=token,
            hash=link_hash,
            record_id=payload.record_id,
            expires_at=payload.expires_at,
            superseded_id=superseded_id,
        )

    async def _check_cooldown(self, subject_id: str, action: str) -> None:
        remaining = await self.guard.remaining(subject_id, action)
        if remaining > 0:
            raise CooldownError(remaining)

        # Cold cache: fall back to the authoritative history before allowing a new issue.
        last = await self.store.last_issued_at(subject_id, action)
        if last is None:
            return
        remaining = self.guard.remaining_from(last)
        if remaining > 0:
            await self.guard.prime(subject_id, action, last)
            raise CooldownError(remaining)

    def _build_link(self, data: str, link_hash: str, token: str) -> str:
        link = self.endpoint.replace("{data}", quote(data, safe="")).replace("{hash}", link_hash)
        # RSA links never expose the token; the verifier reads it from the store.
        return link.replace("{token}", token if self.codec.carries_token else "")

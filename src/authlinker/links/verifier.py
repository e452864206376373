"""
Verification contract for issued links.

Web verifiers call ``LinkVerifier.verify`` with the ``data`` and ``hash`` (and,
for obfuscated links, ``token``) query values. Every failure produces the same
invalid result. The concrete reason is only logged.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from authlinker.links.errors import LinkError
from authlinker.links.payload import LinkPayload, decode_payload, to_epoch_millis
from authlinker.links.tokens import compute_link_hash, hashes_match

if TYPE_CHECKING:
    from authlinker.links.codecs import Codec
    from authlinker.links.store import RecordStore

logger = structlog.get_logger()

INVALID_LINK_MESSAGE = "Invalid or expired link"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    payload: LinkPayload | None = None

    @property
    def message(self) -> str:
        return "ok" if self.valid else INVALID_LINK_MESSAGE


_INVALID = VerificationResult(valid=False)


class LinkVerifier:
    """Decode, check the hash binding, and consume a link exactly once."""

    def __init__(
        self,
        store: RecordStore,
        codec: Codec,
        salt: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.salt = salt
        self._clock = clock

    async def verify(self, data: str, link_hash: str, token: str | None = None) -> VerificationResult:
        try:
            payload = decode_payload(self.codec.decode(data))
        except LinkError as e:
            return self._reject("undecodable", error=str(e))

        if payload.expires_time <= to_epoch_millis(self._clock()):
            return self._reject("expired", record_id=payload.record_id)

        try:
            if token is None:
                record = await self.store.get(payload.record_id)
                if record is None:
                    return self._reject("unknown_record", record_id=payload.record_id)
                token = record.token

            expected = compute_link_hash(payload.plain_base64(), token, self.salt)
            if not hashes_match(expected, link_hash):
                return self._reject("hash_mismatch", record_id=payload.record_id)

            if not await self.store.is_valid(payload.record_id, token):
                return self._reject("record_invalid", record_id=payload.record_id)

            if not await self.store.mark_used(payload.record_id):
                return self._reject("already_consumed", record_id=payload.record_id)
        except LinkError as e:
            return self._reject("storage", record_id=payload.record_id, error=str(e))

        logger.info(
            "link_verified",
            record_id=payload.record_id,
            subject_id=payload.subject_id,
            action=payload.action,
        )
        return VerificationResult(valid=True, payload=payload)

    @staticmethod
    def _reject(reason: str, **context: object) -> VerificationResult:
        logger.info("link_verification_failed", reason=reason, **context)
        return _INVALID

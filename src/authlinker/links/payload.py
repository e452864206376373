"""
Canonical link payload.

The payload is compact JSON with a fixed key order. The same bytes are handed to
the codec and (base64-encoded) to the hash, so the hash binds exactly what is
transmitted. Key names follow what deployed verifiers rebuild:
``uuid``, ``action``, ``player_uuid``, ``expires_time`` (epoch milliseconds).
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone

from authlinker.links.errors import PayloadError

PAYLOAD_KEYS = ("uuid", "action", "player_uuid", "expires_time")


def to_epoch_millis(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class LinkPayload:
    """The four fields a link carries."""

    record_id: str
    action: str
    subject_id: str
    expires_time: int

    @property
    def expires_at(self) -> datetime:
        return from_epoch_millis(self.expires_time)

    def to_bytes(self) -> bytes:
        return encode_payload(self.action, self.record_id, self.subject_id, self.expires_time)

    def plain_base64(self) -> str:
        """Standard base64 of the canonical bytes: the hash input."""
        return base64.b64encode(self.to_bytes()).decode("ascii")


def encode_payload(action: str, record_id: str, subject_id: str, expires_at: datetime | int) -> bytes:
    """Serialize the link fields into canonical bytes."""
    expires_time = expires_at if isinstance(expires_at, int) else to_epoch_millis(expires_at)
    document = {
        "uuid": record_id,
        "action": action,
        "player_uuid": subject_id,
        "expires_time": expires_time,
    }
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_payload(raw: bytes) -> LinkPayload:
    """
    Parse canonical bytes back into a LinkPayload.

    Raises:
        PayloadError: If the bytes are not a JSON object with the four fields.
    """
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        msg = "Payload is not valid JSON"
        raise PayloadError(msg) from e

    if not isinstance(document, dict) or any(key not in document for key in PAYLOAD_KEYS):
        msg = "Payload is missing required fields"
        raise PayloadError(msg)

    expires_time = document["expires_time"]
    if isinstance(expires_time, bool) or not isinstance(expires_time, int):
        msg = "Payload expires_time must be an integer"
        raise PayloadError(msg)
    for key in ("uuid", "action", "player_uuid"):
        if not isinstance(document[key], str) or not document[key]:
            msg = f"Payload field {key} must be a non-empty string"
            raise PayloadError(msg)

    return LinkPayload(
        record_id=document["uuid"],
        action=document["action"],
        subject_id=document["player_uuid"],
        expires_time=expires_time,
    )


def b64decode_strict(value: str) -> bytes:
    """Decode standard base64, raising PayloadError instead of binascii.Error."""
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        msg = "Invalid base64 data"
        raise PayloadError(msg) from e

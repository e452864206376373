"""
Link data codecs.

A codec turns canonical payload bytes into the opaque ``data`` string placed in
a link, and back. Two families exist, selected once from configuration:

* ``obfuscate``: a reversible base64 substitution whose table rotates with
  time. The verifier receives the token in the link.
* ``rsa``: public-key encryption. Only the private-key holder can read it, and
  the verifier looks the token up in the record store.
"""

from __future__ import annotations

import base64
import json
from typing import Protocol

from authlinker.config import BASE64_ALPHABET, Settings
from authlinker.links.errors import CryptoError, PayloadError
from authlinker.links.payload import b64decode_strict
from authlinker.links.prng import shuffle
from authlinker.links.rsa_keys import RsaKeyStore

PADDING_CHAR = "="
PADDING_SENTINEL = "_"


class Codec(Protocol):
    name: str
    carries_token: bool

    def is_ready(self) -> bool: ...

    def encode(self, payload: bytes, now_ms: int) -> str: ...

    def decode(self, data: str) -> bytes: ...


# ---------------------------------------------------------------------------
# Rotating substitution
# ---------------------------------------------------------------------------


def apply_shift(value: str, shift: int) -> str:
    """Caesar-shift base64 characters; padding, sentinel and foreign characters pass through."""
    size = len(BASE64_ALPHABET)
    out = []
    for c in value:
        if c in (PADDING_CHAR, PADDING_SENTINEL):
            out.append(c)
            continue
        index = BASE64_ALPHABET.find(c)
        if index == -1:
            out.append(c)
        else:
            out.append(BASE64_ALPHABET[(index + shift) % size])
    return "".join(out)


def build_mappings(table: str) -> tuple[dict[str, str], dict[str, str]]:
    """Forward (base64 -> table) and reverse maps, with '=' <-> '_' fixed."""
    forward: dict[str, str] = {}
    reverse: dict[str, str] = {}
    for i, std in enumerate(BASE64_ALPHABET):
        obf = table[i] if i < len(table) else std
        forward[std] = obf
        reverse[obf] = std
    forward[PADDING_CHAR] = PADDING_SENTINEL
    reverse[PADDING_SENTINEL] = PADDING_CHAR
    return forward, reverse


def _translate(value: str, mapping: dict[str, str]) -> str:
    return "".join(mapping.get(c, c) for c in value)


class RotatingSubstitutionCodec:
    """Base64 + shift + substitution, with the table reshuffled every rotation period."""

    name = "obfuscate"
    carries_token = True

    def __init__(self, shift: int, table: str, rotation_period: int) -> None:
        if rotation_period <= 0:
            msg = "rotation_period must be positive"
            raise ValueError(msg)
        self.shift = shift
        self.table = table
        self.rotation_period = rotation_period
        self._legacy_forward, self._legacy_reverse = build_mappings(table)

    def is_ready(self) -> bool:
        return True

    def table_at(self, timestamp_ms: int) -> str:
        """The substitution table active for the rotation bucket containing timestamp_ms."""
        seed = timestamp_ms // (self.rotation_period * 1000)
        return "".join(shuffle(list(self.table), seed))

    def obfuscate(self, plaintext: bytes, timestamp_ms: int) -> str:
        forward, _ = build_mappings(self.table_at(timestamp_ms))
        shifted = apply_shift(base64.b64encode(plaintext).decode("ascii"), self.shift)
        wrapper = {"data": _translate(shifted, forward), "time": timestamp_ms}
        encoded = json.dumps(wrapper, separators=(",", ":")).encode("utf-8")
        return base64.b64encode(encoded).decode("ascii")

    def obfuscate_legacy(self, plaintext: bytes) -> str:
        """Pre-rotation format: fixed table, no wrapper."""
        shifted = apply_shift(base64.b64encode(plaintext).decode("ascii"), self.shift)
        return _translate(shifted, self._legacy_forward)

    def deobfuscate(self, encoded: str) -> bytes:
        """
        Reverse obfuscate(), falling back to the legacy unwrapped format.

        Raises:
            PayloadError: If neither format decodes.
        """
        wrapped = self._unwrap(encoded)
        if wrapped is not None:
            data, timestamp_ms = wrapped
            _, reverse = build_mappings(self.table_at(timestamp_ms))
            return b64decode_strict(apply_shift(_translate(data, reverse), -self.shift))

        return b64decode_strict(apply_shift(_translate(encoded, self._legacy_reverse), -self.shift))

    @staticmethod
    def _unwrap(encoded: str) -> tuple[str, int] | None:
        try:
            document = json.loads(b64decode_strict(encoded).decode("utf-8"))
        except (PayloadError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(document, dict):
            return None
        data = document.get("data")
        timestamp_ms = document.get("time")
        if not isinstance(data, str) or isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, int):
            return None
        return data, timestamp_ms

    def encode(self, payload: bytes, now_ms: int) -> str:
        return self.obfuscate(payload, now_ms)

    def decode(self, data: str) -> bytes:
        return self.deobfuscate(data)


# ---------------------------------------------------------------------------
# Asymmetric
# ---------------------------------------------------------------------------


class AsymmetricCodec:
    """RSA public-key encryption of the canonical payload."""

    name = "rsa"
    carries_token = False

    def __init__(self, key_store: RsaKeyStore) -> None:
        self.key_store = key_store

    def is_ready(self) -> bool:
        return self.key_store.is_loaded()

    def encode(self, payload: bytes, now_ms: int) -> str:  # noqa: ARG002
        return self.key_store.encrypt(payload)

    def decode(self, data: str) -> bytes:
        try:
            return self.key_store.decrypt(data)
        except CryptoError as e:
            raise PayloadError(str(e)) from e


def build_codec(settings: Settings, key_store: RsaKeyStore | None = None) -> Codec:
    """Pick the codec named by settings.codec."""
    if settings.codec == "rsa":
        if key_store is None:
            key_store = RsaKeyStore(settings.key_dir)
            key_store.load()
        return AsymmetricCodec(key_store)
    return RotatingSubstitutionCodec(
        shift=settings.base64_shift,
        table=settings.base64_obfuscation_table,
        rotation_period=settings.rotation_timestamp,
    )

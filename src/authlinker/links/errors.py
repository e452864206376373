"""Typed failures for link issuance and verification."""

from __future__ import annotations


class LinkError(Exception):
    """Base class for all link failures. `code` is the stable machine-readable name."""

    code = "link_error"


class InvalidActionError(LinkError):
    code = "invalid_action"

    def __init__(self, action: str) -> None:
        super().__init__(f"Action '{action}' is not allowed")
        self.action = action


class CooldownError(LinkError):
    """Issued too recently for this subject and action."""

    code = "cooldown"

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(f"Too many requests, retry in {remaining_seconds}s")
        self.remaining_seconds = remaining_seconds


class KeysNotLoadedError(LinkError):
    """RSA codec configured but no keypair is available. Run keygen first."""

    code = "keys_not_loaded"

    def __init__(self, message: str = "RSA keypair not loaded") -> None:
        super().__init__(message)


class StorageError(LinkError):
    code = "storage_failure"


class CryptoError(LinkError):
    """Digest or cipher failure. Fatal to one attempt, never to the process."""

    code = "crypto_failure"


class PayloadError(LinkError):
    """Malformed or undecodable link data."""

    code = "invalid_payload"

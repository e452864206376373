"""
RSA keypair management for the asymmetric link codec.

Keys are stored as base64 text of the standard DER encodings so that verifiers
in other languages can import them directly:

* ``public.key``: SubjectPublicKeyInfo (X.509)
* ``private.key``: PKCS#8
"""

from __future__ import annotations

import base64
import binascii
from pathlib import Path

import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from authlinker.links.errors import CryptoError, KeysNotLoadedError

logger = structlog.get_logger()

PUBLIC_KEY_FILE = "public.key"
PRIVATE_KEY_FILE = "private.key"
KEY_SIZE = 2048


class RsaKeyStore:
    """Holds the active keypair. Generation is explicit, loading happens at startup."""

    def __init__(self, key_dir: str | Path) -> None:
        self.key_dir = Path(key_dir)
        self._public_key: rsa.RSAPublicKey | None = None
        self._private_key: rsa.RSAPrivateKey | None = None

    @property
    def public_path(self) -> Path:
        return self.key_dir / PUBLIC_KEY_FILE

    @property
    def private_path(self) -> Path:
        return self.key_dir / PRIVATE_KEY_FILE

    def is_loaded(self) -> bool:
        return self._public_key is not None and self._private_key is not None

    def load(self) -> bool:
        """Load both key files. Returns False (and stays unloaded) if either is missing or unreadable."""
        if not self.public_path.exists() or not self.private_path.exists():
            logger.warning("rsa_keys_missing", key_dir=str(self.key_dir))
            return False

        try:
            public_der = base64.b64decode(self.public_path.read_bytes())
            private_der = base64.b64decode(self.private_path.read_bytes())
            public_key = serialization.load_der_public_key(public_der)
            private_key = serialization.load_der_private_key(private_der, password=None)
        except (OSError, ValueError, TypeError, binascii.Error, UnsupportedAlgorithm) as e:
            logger.error("rsa_keys_load_failed", key_dir=str(self.key_dir), error=str(e))
            return False

        if not isinstance(public_key, rsa.RSAPublicKey) or not isinstance(private_key, rsa.RSAPrivateKey):
            logger.error("rsa_keys_wrong_type", key_dir=str(self.key_dir))
            return False

        self._public_key = public_key
        self._private_key = private_key
        logger.info("rsa_keys_loaded", key_dir=str(self.key_dir))
        return True

    def generate(self) -> Path:
        """
        Generate a new 2048-bit keypair, persist it, and make it active.

        Replacing the pair invalidates every pending link encrypted with the old one.

        Returns:
            The directory the key files were written to.

        Raises:
            CryptoError: If the keys could not be generated or written.
        """
        try:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
            public_key = private_key.public_key()
            private_der = private_key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            public_der = public_key.public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )

            self.key_dir.mkdir(parents=True, exist_ok=True)
            self.public_path.write_bytes(base64.b64encode(public_der))
            self.private_path.write_bytes(base64.b64encode(private_der))
            self.private_path.chmod(0o600)
        except (OSError, ValueError) as e:
            logger.error("rsa_keygen_failed", key_dir=str(self.key_dir), error=str(e))
            msg = "RSA key generation failed"
            raise CryptoError(msg) from e

        self._public_key = public_key
        self._private_key = private_key
        logger.info("rsa_keys_generated", key_dir=str(self.key_dir.resolve()))
        return self.key_dir

    def public_key_base64(self) -> str | None:
        """Base64 DER of the public key, or None when no keys are loaded."""
        if self._public_key is None:
            return None
        der = self._public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(der).decode("ascii")

    def encrypt(self, data: bytes) -> str:
        """Encrypt with the public key (PKCS#1 v1.5) and return base64 ciphertext."""
        if self._public_key is None:
            raise KeysNotLoadedError("Public key not loaded, generate a keypair first")
        try:
            ciphertext = self._public_key.encrypt(data, padding.PKCS1v15())
        except ValueError as e:
            msg = "RSA encryption failed"
            raise CryptoError(msg) from e
        return base64.b64encode(ciphertext).decode("ascii")

    def decrypt(self, ciphertext_b64: str) -> bytes:
        """Decrypt base64 ciphertext with the private key."""
        if self._private_key is None:
            raise KeysNotLoadedError("Private key not loaded, generate a keypair first")
        try:
            ciphertext = base64.b64decode(ciphertext_b64.encode("ascii"), validate=True)
            return self._private_key.decrypt(ciphertext, padding.PKCS1v15())
        except (ValueError, UnicodeEncodeError, binascii.Error) as e:
            msg = "RSA decryption failed"
            raise CryptoError(msg) from e

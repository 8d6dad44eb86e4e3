"""Fernet encryption and fingerprinting for pooled API credentials.

Credential secrets are stored encrypted (Fernet, non-deterministic) next to a
SHA-256 fingerprint. The fingerprint lets the pool reject duplicate secrets
and look them up without decrypting every row, and the masked hint is the
only form of the secret that is ever shown or logged.

The FERNET_KEY environment variable must be set with a valid Fernet key
generated via `Fernet.generate_key()`.

Usage:
    from app.utils.encryption import fingerprint_secret, get_encryption_service, mask_secret

    service = get_encryption_service()
    encrypted = service.encrypt("AIzaSy...")
    fingerprint = fingerprint_secret("AIzaSy...")
    hint = mask_secret("AIzaSy...")  # "AIza...x9Qk"
"""

import hashlib
import os
from typing import ClassVar

from cryptography.fernet import Fernet, InvalidToken


class EncryptionKeyMissing(Exception):
    """Raised when FERNET_KEY is not set or is not a valid Fernet key."""

    pass


class DecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted.

    Attributes:
        credential_id: Credential whose secret failed to decrypt, if known.
    """

    def __init__(self, message: str, credential_id: int | None = None) -> None:
        self.credential_id = credential_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.credential_id is not None:
            return f"{super().__str__()} (credential_id={self.credential_id})"
        return super().__str__()


class EncryptionService:
    """Singleton Fernet cipher loaded from FERNET_KEY.

    Raises:
        EncryptionKeyMissing: If FERNET_KEY environment variable is not set.
    """

    _instance: ClassVar["EncryptionService | None"] = None
    _cipher: Fernet

    def __new__(cls) -> "EncryptionService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        key = os.environ.get("FERNET_KEY")
        if not key:
            raise EncryptionKeyMissing(
                "FERNET_KEY environment variable is required to store credential secrets"
            )
        try:
            self._cipher = Fernet(key.encode())
        except ValueError as e:
            raise EncryptionKeyMissing(
                "Invalid FERNET_KEY format: Fernet key must be 32 url-safe base64-encoded bytes"
            ) from e

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt a secret for database storage."""
        return self._cipher.encrypt(plaintext.encode())

    def decrypt(self, ciphertext: bytes, credential_id: int | None = None) -> str:
        """Decrypt a stored secret.

        Raises:
            DecryptionError: If decryption fails (wrong key or corrupted data).
        """
        try:
            return self._cipher.decrypt(ciphertext).decode()
        except InvalidToken as e:
            raise DecryptionError(
                "Decryption failed: invalid encryption key or corrupted data",
                credential_id=credential_id,
            ) from e

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (for testing only)."""
        cls._instance = None


def get_encryption_service() -> EncryptionService:
    """Get the singleton EncryptionService instance."""
    return EncryptionService()


def fingerprint_secret(secret: str) -> str:
    """Return the SHA-256 hex digest used for duplicate detection."""
    return hashlib.sha256(secret.strip().encode()).hexdigest()


def mask_secret(secret: str) -> str:
    """Mask a secret, keeping only the first and last 4 characters.

    Example:
        >>> mask_secret("AIzaSyD-1234567890abcd")
        'AIza...abcd'
        >>> mask_secret("short")
        '********'
    """
    if len(secret) <= 8:
        return "********"
    return f"{secret[:4]}...{secret[-4:]}"

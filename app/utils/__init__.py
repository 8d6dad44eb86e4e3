"""Cross-cutting utilities for the orchestration core.

This package contains helper functions used across multiple services.
Utilities should be pure functions or singletons without business logic.

Modules:
    encryption: Fernet encryption, fingerprinting and masking of credential secrets.
    alerts: Throttled Discord webhook alerts.
    logging: structlog configuration.
"""

from app.utils.encryption import (
    DecryptionError,
    EncryptionKeyMissing,
    EncryptionService,
    fingerprint_secret,
    get_encryption_service,
    mask_secret,
)

__all__ = [
    "DecryptionError",
    "EncryptionKeyMissing",
    "EncryptionService",
    "fingerprint_secret",
    "get_encryption_service",
    "mask_secret",
]

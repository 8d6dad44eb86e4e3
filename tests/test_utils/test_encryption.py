"""Tests for the encryption utility module.

This module tests the EncryptionService class and related functionality
including encrypt/decrypt operations, error handling, the singleton
pattern, fingerprinting and masking.
"""

import pytest
from cryptography.fernet import Fernet

from app.utils.encryption import (
    DecryptionError,
    EncryptionKeyMissing,
    EncryptionService,
    fingerprint_secret,
    get_encryption_service,
    mask_secret,
)


class TestEncryptionService:
    """Test suite for EncryptionService class."""

    def test_encrypt_produces_non_deterministic_bytes(self) -> None:
        service = get_encryption_service()

        first = service.encrypt("AIzaSyD-1234567890abcd")
        second = service.encrypt("AIzaSyD-1234567890abcd")

        assert isinstance(first, bytes)
        assert first != second
        assert service.decrypt(first) == service.decrypt(second) == "AIzaSyD-1234567890abcd"

    def test_singleton_returns_same_instance(self) -> None:
        assert get_encryption_service() is get_encryption_service()

    def test_missing_key_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        EncryptionService.reset_instance()
        monkeypatch.delenv("FERNET_KEY", raising=False)

        with pytest.raises(EncryptionKeyMissing, match="FERNET_KEY"):
            get_encryption_service()

    def test_invalid_key_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        EncryptionService.reset_instance()
        monkeypatch.setenv("FERNET_KEY", "not-a-fernet-key")

        with pytest.raises(EncryptionKeyMissing, match="Invalid FERNET_KEY"):
            get_encryption_service()

    def test_decrypt_with_wrong_key_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        ciphertext = get_encryption_service().encrypt("secret")

        EncryptionService.reset_instance()
        monkeypatch.setenv("FERNET_KEY", Fernet.generate_key().decode())

        with pytest.raises(DecryptionError) as exc_info:
            get_encryption_service().decrypt(ciphertext, credential_id=7)

        assert exc_info.value.credential_id == 7
        assert "credential_id=7" in str(exc_info.value)


class TestFingerprintAndMask:
    def test_fingerprint_is_stable_and_ignores_whitespace(self) -> None:
        assert fingerprint_secret("AIzaSyKey") == fingerprint_secret("  AIzaSyKey\n")
        assert len(fingerprint_secret("AIzaSyKey")) == 64

    def test_different_secrets_have_different_fingerprints(self) -> None:
        assert fingerprint_secret("AIzaSyKeyA") != fingerprint_secret("AIzaSyKeyB")

    def test_mask_keeps_first_and_last_four(self) -> None:
        assert mask_secret("AIzaSyD-1234567890abcd") == "AIza...abcd"

    def test_short_secret_is_fully_masked(self) -> None:
        assert mask_secret("short") == "********"

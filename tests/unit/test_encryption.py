"""
Test encryption service functionality.
"""

import pytest

from leadflow.config import settings
from leadflow.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_oauth_tokens,
    decrypt_token,
    encrypt_oauth_tokens,
    encrypt_token,
    generate_new_key,
    validate_encryption_config,
)


def test_basic_encryption_decryption():
    test_token = "ya29.fake_access_token_12345"

    encrypted = encrypt_token(test_token)

    assert isinstance(encrypted, bytes)
    assert test_token.encode() not in encrypted
    assert decrypt_token(encrypted) == test_token


def test_token_pair_round_trip():
    encrypted_access, encrypted_refresh = encrypt_oauth_tokens("access", "refresh")
    assert decrypt_oauth_tokens(encrypted_access, encrypted_refresh) == ("access", "refresh")


def test_encryption_config_validation(monkeypatch):
    assert validate_encryption_config() is True

    monkeypatch.setattr(settings, "ENCRYPTION_KEY", None)
    assert validate_encryption_config() is False


def test_rotated_key_cannot_read_old_ciphertext(monkeypatch):
    encrypted = encrypt_token("refresh-token")

    monkeypatch.setattr(settings, "ENCRYPTION_KEY", generate_new_key())

    with pytest.raises(EncryptionError):
        decrypt_token(encrypted)


@pytest.mark.parametrize("bad_input", ["", None])
def test_empty_tokens_rejected(bad_input):
    with pytest.raises(EncryptionError):
        encrypt_token(bad_input)


def test_invalid_key_reported(monkeypatch):
    monkeypatch.setattr(settings, "ENCRYPTION_KEY", "not-a-fernet-key")

    with pytest.raises(EncryptionError):
        encrypt_token("anything")

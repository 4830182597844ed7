"""
Encryption service for stored calendar tokens.
Uses Fernet symmetric encryption; ciphertext is stored as BYTEA.
"""

from cryptography.fernet import Fernet, InvalidToken

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    pass


def _get_fernet() -> Fernet:
    """
    Get Fernet instance with encryption key from settings.

    Raises:
        EncryptionError: If encryption key is missing or malformed
    """
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(settings.ENCRYPTION_KEY.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> bytes:
    """
    Encrypt a token string for database storage.

    Raises:
        EncryptionError: If the token is empty or encryption fails
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    return _get_fernet().encrypt(token.encode("utf-8"))


def decrypt_token(encrypted_token: bytes) -> str:
    """
    Decrypt a token from database storage.

    Raises:
        EncryptionError: If decryption fails or the ciphertext is invalid
    """
    if not encrypted_token or not isinstance(encrypted_token, bytes):
        raise EncryptionError("Encrypted token must be non-empty bytes")

    try:
        return _get_fernet().decrypt(encrypted_token).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e


def validate_encryption_config() -> bool:
    """Round-trip a dummy value to confirm the key works."""
    try:
        return decrypt_token(encrypt_token("encryption_check")) == "encryption_check"
    except EncryptionError as e:
        logger.error("Encryption configuration validation failed", error=str(e))
        return False


def generate_new_key() -> str:
    """Generate a new Fernet key (for initial setup or key rotation)."""
    return Fernet.generate_key().decode("utf-8")


def encrypt_oauth_tokens(access_token: str, refresh_token: str) -> tuple[bytes, bytes]:
    """Encrypt an access/refresh token pair."""
    return encrypt_token(access_token), encrypt_token(refresh_token)


def decrypt_oauth_tokens(encrypted_access: bytes, encrypted_refresh: bytes) -> tuple[str, str]:
    """Decrypt an access/refresh token pair."""
    return decrypt_token(encrypted_access), decrypt_token(encrypted_refresh)

"""Encryption of seller API tokens at rest.

Uses Fernet symmetric encryption with the ``ENCRYPTION_MASTER_KEY`` setting.
"""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from creative_rotator.config import settings
from creative_rotator.logging import get_logger

logger = get_logger(__name__)

# Key generated for this process when none is configured
_generated_dev_key: str | None = None


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""

    pass


def _get_master_key() -> bytes:
    """Configured master key, or a per-process key for local development."""
    global _generated_dev_key

    key = settings.encryption_master_key
    if not key:
        if _generated_dev_key is None:
            _generated_dev_key = Fernet.generate_key().decode()
            logger.warning(
                "encryption_using_generated_key",
                hint="Set ENCRYPTION_MASTER_KEY so stored API tokens survive restarts",
            )
        key = _generated_dev_key

    return key.encode()


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Get a cached Fernet instance with the master key."""
    try:
        return Fernet(_get_master_key())
    except ValueError as e:
        raise EncryptionError(f"Invalid ENCRYPTION_MASTER_KEY: {e}") from e


def encrypt_token(token: str) -> str:
    """Encrypt an API token for storage.

    Raises:
        EncryptionError: If the token is empty or the key is unusable.
    """
    if not token:
        raise EncryptionError("Cannot encrypt empty token")
    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored API token.

    Raises:
        EncryptionError: If decryption fails (invalid key or corrupted data).
    """
    if not encrypted_token:
        raise EncryptionError("Cannot decrypt empty token")

    try:
        return get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise EncryptionError(
            "Failed to decrypt token: invalid key or corrupted data. "
            "This happens when ENCRYPTION_MASTER_KEY changed."
        ) from e


def generate_master_key() -> str:
    """Generate a new Fernet-compatible master key."""
    return Fernet.generate_key().decode()

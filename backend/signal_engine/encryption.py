"""
Encryption utilities for exchange credentials stored in the api_keys table.

Uses Fernet symmetric encryption (AES-128-CBC with HMAC-SHA256).
"""

import logging

from cryptography.fernet import Fernet, InvalidToken

from signal_engine.config import settings

logger = logging.getLogger(__name__)

_fernet = None


def _get_fernet() -> Fernet:
    """Get or create the Fernet instance from the configured encryption key."""
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError(
                "ENCRYPTION_KEY not set in .env. "
                "Generate one with Fernet.generate_key() and set ENCRYPTION_KEY."
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt_value(plaintext: str) -> str:
    """Encrypt an API secret; returns a Fernet token string."""
    if not plaintext:
        return plaintext
    f = _get_fernet()
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    if not ciphertext:
        return ciphertext
    f = _get_fernet()
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("Failed to decrypt credential: invalid token or wrong encryption key")
        raise


def is_encrypted(value: str) -> bool:
    """Fernet tokens always start with 'gAAAAA'."""
    if not value:
        return False
    return value.startswith("gAAAAA")


def reset_fernet_cache():
    """Forget the cached Fernet instance (used when the key changes, e.g. in tests)."""
    global _fernet
    _fernet = None

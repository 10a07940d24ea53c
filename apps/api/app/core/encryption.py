"""Encryption of calendar OAuth tokens at rest.

Tokens are encrypted with the current FERNET_KEY. During key rotation the
previous key stays readable (FERNET_KEY_PREVIOUS) until every stored token
has been re-encrypted by a refresh.
"""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from app.core.config import settings


@lru_cache(maxsize=1)
def _cipher(current: str, previous: str) -> MultiFernet:
    keys = [Fernet(current.encode())]
    if previous:
        keys.append(Fernet(previous.encode()))
    return MultiFernet(keys)


def get_cipher() -> MultiFernet:
    """Cipher for the configured keys (current first)."""
    if not settings.FERNET_KEY:
        raise RuntimeError(
            "FERNET_KEY not configured. "
            'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
        )
    return _cipher(settings.FERNET_KEY, settings.FERNET_KEY_PREVIOUS)


def encrypt_token(token: str) -> str:
    """Encrypt an access or refresh token for storage. Empty stays empty."""
    if not token:
        return ""
    return get_cipher().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """
    Decrypt a stored token.

    Raises:
        ValueError: the value was not produced by any configured key
    """
    if not encrypted:
        return ""
    try:
        return get_cipher().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted token")

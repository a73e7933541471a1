"""
Token encryption — encrypt / decrypt provider tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The encryption key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and tokens are stored
as plaintext (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def configure(key: Optional[str]) -> bool:
    """
    (Re)initialise the cipher with ``key``; an empty key disables
    encryption.  Returns whether encryption is now enabled.
    """
    global _fernet, _initialised
    _initialised = True
    if not key:
        _fernet = None
        logger.warning("TOKEN_ENCRYPTION_KEY not set — provider tokens will be stored as plaintext.")
        return False
    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as exc:
        _fernet = None
        logger.error("Failed to initialise Fernet with provided key: %s", exc)
        return False
    logger.info("Token encryption enabled (Fernet/AES-128-CBC)")
    return True


def _cipher() -> Optional[Fernet]:
    if not _initialised:
        configure(config.token_encryption_key)
    return _fernet


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    """
    Encrypt a token string for database storage.

    ``None`` passes through.  If encryption is disabled, returns the
    plaintext unchanged.
    """
    fernet = _cipher()
    if plaintext is None or fernet is None:
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    """
    Decrypt a token string read from the database.

    Tokens stored before encryption was enabled are not valid Fernet
    tokens and are returned as-is.
    """
    fernet = _cipher()
    if ciphertext is None or fernet is None:
        return ciphertext
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    return _cipher() is not None

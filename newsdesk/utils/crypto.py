"""
Encryption helpers for per-user provider API keys.

Ciphertexts are stored as ``v1$<iterations>$<salt>$<fernet token>``. The key
is derived from the server passphrase with PBKDF2-HMAC-SHA256 and a salt that
is generated for every ciphertext.
"""

import base64
import binascii
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from newsdesk.errors import ConfigurationError, CredentialDecryptionError
from newsdesk.utils.config import get_encryption_config

logger = logging.getLogger(__name__)

_VERSION = "v1"
_SALT_BYTES = 16


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode((text + padding).encode("ascii"))


def _resolve_passphrase(passphrase: Optional[str]) -> str:
    secret = passphrase if passphrase is not None else get_encryption_config()["secret"]
    if not secret:
        raise ConfigurationError("ENCRYPTION_SECRET not configured")
    return secret


def _derive_fernet(passphrase: str, salt: bytes, iterations: int) -> Fernet:
    digest = hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, iterations, dklen=32)
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_api_key(api_key: str, passphrase: Optional[str] = None, *, iterations: Optional[int] = None) -> str:
    """
    Encrypt an API key for storage.

    Args:
        api_key: Plaintext key
        passphrase: Server passphrase. Defaults to ENCRYPTION_SECRET.
        iterations: PBKDF2 iterations. Defaults to ENCRYPTION_KDF_ITERATIONS.

    Returns:
        Opaque ciphertext safe for a text column
    """
    secret = _resolve_passphrase(passphrase)
    iter_count = int(iterations or get_encryption_config()["iterations"])
    salt = os.urandom(_SALT_BYTES)
    token = _derive_fernet(secret, salt, iter_count).encrypt(api_key.encode("utf-8"))
    return f"{_VERSION}${iter_count}${_b64encode(salt)}${token.decode('ascii')}"


def decrypt_api_key(ciphertext: str, passphrase: Optional[str] = None) -> str:
    """
    Decrypt a stored API key.

    Raises:
        ConfigurationError: passphrase missing
        CredentialDecryptionError: ciphertext malformed or encrypted under another passphrase
    """
    secret = _resolve_passphrase(passphrase)

    parts = (ciphertext or "").split("$", 3)
    if len(parts) != 4 or parts[0] != _VERSION:
        raise CredentialDecryptionError()

    _, iter_text, salt_text, token = parts
    try:
        iter_count = int(iter_text)
        salt = _b64decode(salt_text)
        plaintext = _derive_fernet(secret, salt, iter_count).decrypt(token.encode("ascii"))
        return plaintext.decode("utf-8")
    except (ValueError, binascii.Error, InvalidToken) as e:
        logger.warning(f"Stored API key could not be decrypted: {type(e).__name__}")
        raise CredentialDecryptionError() from e

"""Encryption of credential secrets at rest (Fernet)."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from cloudrecon.config import Settings, get_settings


def _fernet(settings: Settings | None = None) -> Fernet:
    settings = settings or get_settings()
    key = settings.credential_encryption_key.strip()
    if key:
        return Fernet(key.encode("utf-8"))
    # Derive a stable key from SECRET_KEY when no dedicated key is configured.
    digest = hashlib.sha256(settings.secret_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(value: str, settings: Settings | None = None) -> str:
    """Encrypt a plaintext secret for storage."""
    return _fernet(settings).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(token: str, settings: Settings | None = None) -> str:
    """Decrypt a stored secret.

    Raises:
        RuntimeError: the token was produced with a different key or is corrupt.
    """
    try:
        return _fernet(settings).decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise RuntimeError("Stored credential secret cannot be decrypted with the configured key") from exc

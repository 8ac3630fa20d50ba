"""Operator password hashing.

Argon2id for everything new; bcrypt hashes from imported accounts still
verify and are re-hashed to Argon2id on the next successful login.
"""

from __future__ import annotations

from dataclasses import dataclass

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from argon2.low_level import Type

_hasher = PasswordHasher(type=Type.ID)

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    upgraded_hash: str | None = None


def validate_password_length(password: str) -> str | None:
    """Return an error message, or None when the length is acceptable."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} characters"
    return None


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password_with_upgrade(plain_password: str, hashed_password: str) -> VerifyResult:
    """Check ``plain_password``; ``upgraded_hash`` is set when the stored hash should be replaced."""
    if not hashed_password:
        return VerifyResult(ok=False)

    if hashed_password.startswith("$argon2"):
        try:
            _hasher.verify(hashed_password, plain_password)
        except (VerificationError, InvalidHashError):
            return VerifyResult(ok=False)
        if _hasher.check_needs_rehash(hashed_password):
            return VerifyResult(ok=True, upgraded_hash=hash_password(plain_password))
        return VerifyResult(ok=True)

    # $2a$ / $2b$ / $2y$
    if hashed_password.startswith("$2"):
        try:
            ok = bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return VerifyResult(ok=False)
        return VerifyResult(ok=True, upgraded_hash=hash_password(plain_password)) if ok else VerifyResult(ok=False)

    return VerifyResult(ok=False)

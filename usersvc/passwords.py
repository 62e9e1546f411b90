"""Password hashing helpers for producing ``hashedPassword``/``salt`` pairs."""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

_PBKDF2_ROUNDS = 600_000
_SALT_BYTES = 16


def generate_salt() -> str:
    return base64.b64encode(secrets.token_bytes(_SALT_BYTES)).decode("ascii")


def hash_password(password: str, salt: str, *, rounds: int = _PBKDF2_ROUNDS) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    try:
        salt_bytes = base64.b64decode(salt, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ValueError("Salt must be base64 encoded") from exc
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt_bytes, rounds)
    return base64.b64encode(digest).decode("ascii")


def verify_password(password: str, salt: str, hashed: str, *, rounds: int = _PBKDF2_ROUNDS) -> bool:
    """Return ``True`` if ``password`` hashes to ``hashed`` with ``salt``."""

    try:
        expected = base64.b64decode(hashed, validate=True)
        calculated = base64.b64decode(hash_password(password, salt, rounds=rounds))
    except (ValueError, binascii.Error):
        return False
    return hmac.compare_digest(expected, calculated)


__all__ = ["generate_salt", "hash_password", "verify_password"]

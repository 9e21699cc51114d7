"""
Password hashing helpers (bcrypt).

Security:
    - Only bcrypt hashes are persisted (`password_credentials.password_hash`).
    - Verification never raises on malformed hashes; it simply fails.
    - Verification always runs one bcrypt check (against a dummy hash when the
      account has none), so unknown emails cost the same as wrong passwords.
"""
from __future__ import annotations

from functools import lru_cache
import secrets

import bcrypt

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def validate_password(plain: str) -> str:
    if not isinstance(plain, str) or not (MIN_PASSWORD_LENGTH <= len(plain) <= MAX_PASSWORD_LENGTH):
        raise ValueError("invalid_password")
    return plain


def hash_password(plain: str) -> str:
    validate_password(plain)
    # bcrypt only considers the first 72 bytes; longer inputs are truncated explicitly
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("ascii")


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return bcrypt.hashpw(secrets.token_bytes(16), bcrypt.gensalt()).decode("ascii")


def verify_password(plain: str, hashed: str | None) -> bool:
    candidate = plain.encode("utf-8")[:72] if isinstance(plain, str) else b""
    try:
        matched = bcrypt.checkpw(candidate, (hashed or _dummy_hash()).encode("ascii"))
    except ValueError:
        return False
    return matched and bool(plain) and bool(hashed)


__all__ = ["MIN_PASSWORD_LENGTH", "MAX_PASSWORD_LENGTH", "validate_password", "hash_password", "verify_password"]

"""
Configuration and startup security checks for the campus backend.

Why: A school platform handles minors' data and paid video minutes; an
accidentally insecure or half-configured deployment must not come up. This
module provides a single guard that enforces minimal production safety
constraints without burdening local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

_PLACEHOLDERS = ("DUMMY", "CHANGE_ME", "CHANGEME")
DSN_ENV_VARS = ("CAMPUS_DATABASE_URL", "DATABASE_URL", "SUPABASE_DB_URL")


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def is_prod_like() -> bool:
    """True when `CAMPUS_ENV` names a production-like deployment."""
    return _is_prod_like(os.getenv("CAMPUS_ENV", "dev"))


def _is_placeholder(value: str) -> bool:
    upper = (value or "").strip().upper()
    return not upper or upper.startswith(_PLACEHOLDERS)


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (production-like `CAMPUS_ENV` only):
    - Supabase service role key must be set and not a placeholder.
    - A database DSN must be configured and must not explicitly disable TLS.
    - Daily.co API key must be set and not a placeholder.
    - `SUPABASE_URL` must use https.
    """

    env = os.getenv("CAMPUS_ENV", "dev")
    if not _is_prod_like(env):
        return

    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    if _is_placeholder(srole):
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a placeholder in production."
        )

    if not any((os.getenv(key) or "").strip() for key in DSN_ENV_VARS):
        raise SystemExit(
            "Refusing to start: no database DSN (CAMPUS_DATABASE_URL, DATABASE_URL or SUPABASE_DB_URL) in production."
        )

    for key in DSN_ENV_VARS:
        if "sslmode=disable" in os.getenv(key, ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    if _is_placeholder(os.getenv("DAILY_API_KEY", "")):
        raise SystemExit("Refusing to start: DAILY_API_KEY is unset or a placeholder in production.")

    supabase_url = (os.getenv("SUPABASE_URL", "") or "").strip().lower()
    if not supabase_url.startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

"""
Shared helper for wiring the Supabase-backed storage adapter.

Why:
    App startup may occur before Supabase is reachable, leaving the storage
    adapter unset and breaking course-file uploads. This helper is idempotent
    and can be used at startup and lazily from the file routes to (re)attempt
    wiring when configuration is present.

Security:
    Requires SUPABASE_SERVICE_ROLE_KEY and SUPABASE_URL. Only server-side
    adapters are wired; no secrets are exposed to clients.
"""
from __future__ import annotations

import logging
import os


def wire_supabase_adapter_if_configured() -> bool:
    """Attempt to wire the Supabase storage adapter for course files.

    Behavior:
        - Returns True when wiring succeeds (adapter injected).
        - Returns False when not configured or the client cannot be built
          (the Null adapter stays in place).
        - Safe to call multiple times.
    """
    logger = logging.getLogger("campus.web")
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        return False
    try:
        from supabase import create_client  # type: ignore
        from teaching.storage_supabase import SupabaseStorageAdapter  # type: ignore
        from routes import courses as _courses  # type: ignore

        client = create_client(url, key)
        _courses.set_storage_adapter(SupabaseStorageAdapter(client))
    except Exception as exc:
        logger.warning("Storage wiring skipped: %s: %s", exc.__class__.__name__, str(exc))
        return False
    logger.info("Storage adapter wired: Supabase")

    try:
        from backend.storage.bootstrap import ensure_buckets_from_env  # type: ignore

        ensure_buckets_from_env()
    except Exception as exc:
        # Bucket provisioning is a dev convenience and must not block wiring.
        logger.warning("Bucket bootstrap failed: %s", exc.__class__.__name__)
    return True


__all__ = ["wire_supabase_adapter_if_configured"]

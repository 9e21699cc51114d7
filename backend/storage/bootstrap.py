"""
Supabase Storage bootstrap helpers.

Intent:
    Make sure the buckets the application writes to exist (course files,
    coursework attachments, chat attachments, avatars).

Security & Safety:
    - App startup only provisions when `AUTO_CREATE_STORAGE_BUCKETS=true`;
      the `campus-admin ensure-buckets` command calls `ensure_buckets`
      directly.
    - Requires server-side `SUPABASE_SERVICE_ROLE_KEY`.
    - Idempotent: lists buckets first, creates only missing ones.
"""
from __future__ import annotations

import inspect
import logging
import os
from typing import Iterable

import requests

from backend.storage.config import public_buckets, required_buckets

_log = logging.getLogger("campus.storage")


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() == "true"


def _with_timeout(func, kwargs: dict) -> dict:
    """Add a timeout when the (possibly monkeypatched) callable accepts one."""
    try:
        params = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return kwargs
    if any(p.kind is inspect.Parameter.VAR_KEYWORD or p.name == "timeout" for p in params):
        kwargs["timeout"] = (3, 10)
    return kwargs


def _headers(key: str) -> dict[str, str]:
    return {"apikey": key, "Authorization": f"Bearer {key}", "Content-Type": "application/json"}


def list_buckets(base_url: str, key: str) -> list[dict]:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    try:
        resp = requests.get(url, **_with_timeout(requests.get, {"headers": _headers(key)}))
    except requests.RequestException as exc:
        _log.warning("list buckets failed: error=%s", type(exc).__name__)
        return []
    _log.debug("GET /storage/v1/bucket status=%s", getattr(resp, "status_code", "?"))
    try:
        data = resp.json()
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def _create_bucket(base_url: str, key: str, name: str, public: bool = False) -> bool:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    payload = {"id": name, "name": name, "public": public}
    try:
        resp = requests.post(url, **_with_timeout(requests.post, {"headers": _headers(key), "json": payload}))
    except requests.RequestException as exc:
        _log.warning("create bucket '%s' failed: error=%s", name, type(exc).__name__)
        return False
    status = getattr(resp, "status_code", 500)
    if status >= 300:
        _log.warning("create bucket '%s' failed: status=%s body=%s", name, status, getattr(resp, "text", ""))
        return False
    _log.info("POST /storage/v1/bucket status=%s created='%s' public=%s", status, name, public)
    return True


def ensure_buckets(base_url: str, key: str, buckets: Iterable[str], *, public: Iterable[str] = ()) -> list[str]:
    """Ensure each bucket exists; create missing ones.

    Parameters:
        base_url: Supabase API base (e.g., https://<project>.supabase.co)
        key: Service role key for server-side administration
        buckets: Bucket names to ensure (private unless listed in `public`)
        public: Bucket names that should be created public-read

    Returns:
        Names of buckets that were created by this call. Buckets still
        missing after the attempt are logged as warnings.
    """
    wanted = [b for b in dict.fromkeys(buckets) if b]
    public_set = set(public)
    existing = {str(it.get("name") or it.get("id") or "") for it in list_buckets(base_url, key)}
    created: list[str] = []
    for name in wanted:
        if name in existing:
            continue
        if _create_bucket(base_url, key, name, public=name in public_set):
            created.append(name)
    if created:
        final = {str(it.get("name") or it.get("id") or "") for it in list_buckets(base_url, key)}
        for name in wanted:
            if name not in final:
                _log.warning("bucket '%s' still missing after create attempt", name)
    return created


def ensure_buckets_from_env() -> bool:
    """Provision the application buckets when AUTO_CREATE_STORAGE_BUCKETS=true.

    Returns False when the flag is off or credentials are missing; True when
    provisioning was attempted.
    """
    if not _env_flag("AUTO_CREATE_STORAGE_BUCKETS"):
        return False
    base = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base or not key:
        return False
    ensure_buckets(base, key, required_buckets(), public=public_buckets())
    return True


__all__ = ["ensure_buckets_from_env", "ensure_buckets", "list_buckets"]

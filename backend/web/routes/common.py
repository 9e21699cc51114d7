"""
Shared helpers for the JSON API routers.

Why:
    Every resource router answers with the same envelope (`{"data": ...}` or
    `{"error": code, "detail"?: ...}`), the same cache policy and the same
    CSRF rule. Keeping these in one place avoids drift between routers.

Error mapping (service exceptions -> HTTP):
    - `ValueError(code)`      -> 400 `{"error": "bad_request", "detail": code}`
    - `PermissionError(code)` -> 403 `{"error": "forbidden", "detail"?: code}`
    - `LookupError(code)`     -> 404 `{"error": "not_found", "detail": code}`
    - anything else           -> 500 `{"error": "internal_error"}` (logged)
"""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from identity_access.callers import Caller, caller_from_user
from repos import get_accounts_repo

from .security import _is_same_origin

logger = logging.getLogger("campus.web")

_PRIVATE = {"Cache-Control": "private, no-store"}


def _json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    """Return `{"data": payload}` with cache disabled for shared caches and browsers."""
    return JSONResponse(content={"data": payload}, status_code=status_code, headers=dict(_PRIVATE))


def _private_error(payload: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers=dict(_PRIVATE))


def _no_content() -> Response:
    return Response(status_code=204, headers=dict(_PRIVATE))


def _role_in(user: dict | None, role: str) -> bool:
    if not user:
        return False
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        return False
    return role in roles


def _current_caller(request: Request) -> Optional[Caller]:
    user = getattr(request.state, "user", None)
    if not user or not user.get("sub"):
        return None
    return caller_from_user(user, get_accounts_repo())


def _require_caller(request: Request):
    """Return (caller, error_response)."""
    caller = _current_caller(request)
    if caller is None:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)
    return caller, None


def _csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    In production (`CAMPUS_ENV=prod`) or with `STRICT_CSRF=true` an Origin or
    Referer header is required and must match the server origin. Otherwise
    requests without either header are allowed (non-browser clients).
    """
    prod_env = (os.getenv("CAMPUS_ENV", "dev") or "").lower() == "prod"
    strict = prod_env or (os.getenv("STRICT_CSRF", "false") or "").lower() == "true"
    if strict and not (request.headers.get("origin") or request.headers.get("referer")):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
    if not _is_same_origin(request):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
    return None


def _error_from_exception(exc: Exception, *, log: logging.Logger = logger, context: str = "") -> JSONResponse:
    """Translate a service exception into the JSON error envelope."""
    detail = str(exc.args[0]) if exc.args else ""
    if isinstance(exc, ValueError):
        return _private_error({"error": "bad_request", "detail": detail or "invalid_input"}, status_code=400)
    if isinstance(exc, PermissionError):
        body = {"error": "forbidden"}
        if detail and detail != "forbidden":
            body["detail"] = detail
        return _private_error(body, status_code=403)
    if isinstance(exc, LookupError):
        return _private_error({"error": "not_found", "detail": detail or "not_found"}, status_code=404)
    log.exception("unexpected failure %s: %s", context, exc.__class__.__name__)
    return _private_error({"error": "internal_error"}, status_code=500)


__all__ = [
    "_json_private",
    "_private_error",
    "_no_content",
    "_role_in",
    "_current_caller",
    "_require_caller",
    "_csrf_guard",
    "_error_from_exception",
]

"Campus LMS backend"
from __future__ import annotations

import os
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from identity_access.domain import primary_role
from identity_access.stores import SessionStore
import sys as _sys

try:
    from .auth_utils import cookie_opts
except ImportError:
    from auth_utils import cookie_opts

# Ensure routers resolving `main` reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via CAMPUS_ENABLE_DOTENV (default true outside
      pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("CAMPUS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config).
# Support both "flat" (container) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("CAMPUS_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("campus.web")
SETTINGS = AuthSettings()
SESSION_COOKIE_NAME = "campus_session"

app = FastAPI(title="Campus LMS", description="Courses, live sessions, coursework and chat", version="0.1.0")

from routes.auth import auth_router
from routes.chat import chat_router
from routes.courses import courses_router
from routes.coursework import coursework_router
from routes.operations import operations_router
from routes.people import people_router
from routes.sessions import sessions_router

# --- Optional Storage Adapter Wiring (Supabase) -------------------------------
try:
    from backend.web.storage_wiring import wire_supabase_adapter_if_configured as _wire_storage  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - container fallback when package path is flattened
    from storage_wiring import wire_supabase_adapter_if_configured as _wire_storage  # type: ignore

# Wire early; the file routes retry lazily when Supabase was not reachable yet.
_wire_storage()

# --- Session Store ---------------------------------------------------------------

if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
    from identity_access.stores_db import DBSessionStore

    SESSION_STORE = DBSessionStore()
else:
    SESSION_STORE = SessionStore()

# --- Auth Helpers & Middleware --------------------------------------------------


def _session_cookie_options() -> dict:
    return cookie_opts(SETTINGS.environment)


def _set_session_cookie(response: Response, value: str, *, max_age: int | None = None) -> None:
    opts = _session_cookie_options()
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=opts["httponly"],
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def _is_public_path(path: str) -> bool:
    return (
        path.startswith("/auth/")
        or path.startswith("/health")
        or path in ("/docs", "/openapi.json", "/favicon.ico")
    )


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Minimal, read-only user context for downstream handlers.
    request.state.user = {
        "sub": rec.sub,
        "name": getattr(rec, "name", ""),
        "email": getattr(rec, "email", ""),
        "role": primary_role(rec.roles),
        "roles": rec.roles,
    }
    request.state.session_expires_at = rec.expires_at
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON-only API: nothing may be framed or loaded from this origin except
    # the interactive docs in dev.
    if SETTINGS.environment == "prod":
        csp = "default-src 'none'; frame-ancestors 'none'"
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
            "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; img-src 'self' data: https:; "
            "frame-ancestors 'none'"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(self), camera=(self)")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Validation errors ----------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report pydantic validation failures as 400 with per-field messages."""
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({"field": ".".join(loc) or "body", "message": err.get("msg", "invalid")})
    return JSONResponse(
        {"error": "bad_request", "detail": "invalid_input", "fields": fields},
        status_code=400,
        headers={"Cache-Control": "private, no-store"},
    )


# --- Routers & App Endpoints ----------------------------------------------------

app.include_router(auth_router)
app.include_router(courses_router)
app.include_router(sessions_router)
app.include_router(coursework_router)
app.include_router(people_router)
app.include_router(chat_router)
app.include_router(operations_router)


@app.get("/health")
async def health_check():
    # Liveness only; readiness lives at /health/ready.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})


@app.get("/api/me")
async def get_me(request: Request):
    user = getattr(request.state, "user", None)
    if not user:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers={"Cache-Control": "private, no-store"})
    expires_at = getattr(request.state, "session_expires_at", None)
    exp_iso = datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat(timespec="seconds") if expires_at else None
    body = {
        "data": {
            "id": user["sub"],
            "name": user.get("name") or "",
            "email": user.get("email") or "",
            "role": user["role"],
            "roles": user["roles"],
            "expires_at": exp_iso,
        }
    }
    return JSONResponse(body, headers={"Cache-Control": "private, no-store"})

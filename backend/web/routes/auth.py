"""
Authentication routes: email/password sign-up, sign-in and sign-out.

Why:
    Keep auth endpoints in a dedicated router. Account rules (validation,
    hashing, rollback) live in `identity_access.accounts`; this adapter only
    translates HTTP to service calls and manages the opaque session cookie.

Notes:
    - The session store and cookie policy are owned by `main`; they are
      resolved per request so tests that swap `main.SESSION_STORE` are honored.
    - Sign-in answers `invalid_credentials` for both unknown email and wrong
      password to avoid account enumeration.
"""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.accounts import AccountsService
from repos import get_accounts_repo

from .common import _csrf_guard, _error_from_exception, _private_error

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("campus.web.auth")


class SignUpPayload(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)
    name: str | None = Field(default=None, max_length=200)
    role: str = Field(default="student", max_length=32)

    @field_validator("name")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class SignInPayload(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)


def _resolve_active_main(request: Request):
    """Return the main module whose `app` serves this request.

    Tests may import the app as either `main` or `backend.web.main`.
    """
    import sys as _sys

    candidates = [m for m in (_sys.modules.get("main"), _sys.modules.get("backend.web.main")) if m]
    for m in candidates:
        if getattr(m, "app", None) is getattr(request, "app", None):
            return m
    return candidates[0] if candidates else None


def _allow_admin_signup() -> bool:
    return (os.getenv("ALLOW_ADMIN_SIGNUP", "false") or "").strip().lower() in ("1", "true", "yes")


def _session_response(request: Request, user: dict, *, status_code: int) -> JSONResponse:
    main = _resolve_active_main(request)
    rec = main.SESSION_STORE.create(
        sub=user["id"],
        roles=[user["role"]],
        name=user.get("name") or "",
        email=user.get("email") or "",
    )
    body = {"data": {"id": user["id"], "email": user["email"], "name": user.get("name"), "role": user["role"]}}
    resp = JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})
    main._set_session_cookie(resp, rec.session_id, max_age=rec.ttl_seconds)
    return resp


@auth_router.post("/auth/sign-up")
async def sign_up(request: Request, payload: SignUpPayload):
    """Create an account and start a session.

    Behavior:
        - 201 with the user and a `campus_session` cookie
        - 400 `invalid_email` / `invalid_password` / `invalid_role` / `email_taken`
        - Admin role only when `ALLOW_ADMIN_SIGNUP=true`
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = AccountsService(get_accounts_repo())
    try:
        user = service.sign_up(
            email=payload.email,
            password=payload.password,
            name=payload.name,
            role=payload.role,
            allow_admin=_allow_admin_signup(),
        )
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="sign_up")
    return _session_response(request, user, status_code=201)


@auth_router.post("/auth/sign-in")
async def sign_in(request: Request, payload: SignInPayload):
    """Authenticate with email and password.

    Behavior:
        - 200 with the user and a fresh `campus_session` cookie
        - 401 `invalid_credentials` for unknown email or wrong password
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    service = AccountsService(get_accounts_repo())
    try:
        user = service.authenticate(payload.email, payload.password)
    except ValueError:
        logger.info("sign-in rejected")
        return _private_error({"error": "invalid_credentials"}, status_code=401)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="sign_in")
    return _session_response(request, user, status_code=200)


@auth_router.post("/auth/sign-out")
async def sign_out(request: Request):
    """End the current session (idempotent) and clear the cookie."""
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    main = _resolve_active_main(request)
    sid = request.cookies.get(main.SESSION_COOKIE_NAME)
    if sid:
        try:
            main.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed: %s", exc.__class__.__name__)
    resp = JSONResponse({"data": {"signed_out": True}}, status_code=200, headers={"Cache-Control": "private, no-store"})
    main._set_session_cookie(resp, "", max_age=0)
    return resp

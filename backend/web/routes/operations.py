"""Operations endpoints (readiness diagnostics for operators and load balancers)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from repos import get_accounts_repo, get_room_provider
from teaching.rooms import NullRoomProvider
from teaching.storage import NullStorageAdapter

from . import courses as courses_routes

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("campus.web.operations")


@dataclass
class ReadinessCheck:
    check: str
    status: str
    detail: str | None = None


def _private_response(body: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _database_check() -> ReadinessCheck:
    try:
        get_accounts_repo().count_users()
    except Exception as exc:
        logger.warning("readiness: database check failed: %s", exc.__class__.__name__)
        return ReadinessCheck("database", "failed", exc.__class__.__name__)
    return ReadinessCheck("database", "ok")


def _video_check() -> ReadinessCheck:
    # A missing provider only degrades scheduling; it does not make the API unready.
    if isinstance(get_room_provider(), NullRoomProvider):
        return ReadinessCheck("video_provider", "degraded", "not_configured")
    return ReadinessCheck("video_provider", "ok")


def _storage_check() -> ReadinessCheck:
    if isinstance(courses_routes.STORAGE_ADAPTER, NullStorageAdapter):
        return ReadinessCheck("storage", "degraded", "not_configured")
    return ReadinessCheck("storage", "ok")


@operations_router.get("/health/ready")
async def readiness(request: Request):
    """
    Return readiness diagnostics.

    Behavior:
        - 200 `{"status": "ready", "checks": [...]}` when the database answers
        - 503 `{"status": "unavailable", ...}` when it does not
        - Missing video/storage configuration is reported as `degraded`
    """
    checks: List[ReadinessCheck] = [_database_check(), _video_check(), _storage_check()]
    failed = any(c.status == "failed" for c in checks)
    body = {
        "status": "unavailable" if failed else "ready",
        "checks": [{"check": c.check, "status": c.status, "detail": c.detail} for c in checks],
    }
    return _private_response(body, status_code=503 if failed else 200)

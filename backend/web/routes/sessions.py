"""
Live session API routes.

Why:
    Scheduling a session provisions an external video room. The scheduler
    owns the create / compensate sequence; this adapter maps its outcomes to
    HTTP.

Behavior:
    - Room provider failure -> 502 `{"error": "bad_gateway",
      "detail": "video_provider_unavailable"}`; nothing is persisted.
    - Students receive 403 on every write.
    - Joining before `scheduled_at` -> 403 `session_not_started`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from repos import get_accounts_repo, get_room_provider, get_teaching_repo
from teaching.services.common import is_uuid_like
from teaching.services.sessions import RoomProvisioningError, SessionScheduler

from .common import (
    _csrf_guard,
    _error_from_exception,
    _json_private,
    _no_content,
    _private_error,
    _require_caller,
)

sessions_router = APIRouter(tags=["Sessions"])
logger = logging.getLogger("campus.web.sessions")


def _scheduler() -> SessionScheduler:
    return SessionScheduler(get_teaching_repo(), get_room_provider(), get_accounts_repo())


class SessionCreate(BaseModel):
    course_id: str
    title: str | None = Field(default=None, max_length=200)
    scheduled_at: str
    duration_minutes: int
    student_ids: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class SessionUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    scheduled_at: str | None = None
    duration_minutes: int | None = None


class SessionJoin(BaseModel):
    session_id: str


def _session_error(exc: Exception, context: str):
    if isinstance(exc, RoomProvisioningError):
        return _private_error({"error": "bad_gateway", "detail": "video_provider_unavailable"}, status_code=502)
    return _error_from_exception(exc, log=logger, context=context)


@sessions_router.get("/api/sessions")
async def list_sessions(request: Request):
    """Admin: all sessions; teacher: own; student: sessions they attend."""
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private(_scheduler().list_for(caller))


@sessions_router.post("/api/sessions")
async def create_session(request: Request, payload: SessionCreate):
    """Schedule a live session and provision its room.

    Behavior:
        - 201 with the session (room name/url, attendees)
        - 400 on invalid input (empty `student_ids`, `duration_minutes < 1`)
        - 403 for students and for teachers not owning the course
        - 404 when the course does not exist
        - 502 when the room provider fails
    """
    caller, error = _require_caller(request)
    if error:
        return error
    if caller.is_student:
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    if not is_uuid_like(payload.course_id):
        return _private_error({"error": "bad_request", "detail": "invalid_course_id"}, status_code=400)
    try:
        # Room provisioning calls the video provider over blocking HTTP.
        session = await asyncio.to_thread(
            _scheduler().create,
            caller,
            course_id=payload.course_id,
            title=payload.title,
            scheduled_at=payload.scheduled_at,
            duration_minutes=payload.duration_minutes,
            student_ids=payload.student_ids,
        )
    except Exception as exc:
        return _session_error(exc, "create_session")
    return _json_private(session, status_code=201)


@sessions_router.post("/api/sessions/join")
async def join_session(request: Request, payload: SessionJoin):
    """Return the in-app url, room url and (when available) a meeting token."""
    caller, error = _require_caller(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    if not is_uuid_like(payload.session_id):
        return _private_error({"error": "bad_request", "detail": "invalid_session_id"}, status_code=400)
    try:
        data = await asyncio.to_thread(_scheduler().join, caller, payload.session_id)
    except Exception as exc:
        return _session_error(exc, "join_session")
    return _json_private(data)


@sessions_router.patch("/api/sessions/{session_id}")
async def update_session(request: Request, session_id: str, payload: SessionUpdate):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(session_id):
        return _private_error({"error": "bad_request", "detail": "invalid_session_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        updated = _scheduler().update(caller, session_id, **payload.model_dump(mode="python", exclude_unset=True))
    except Exception as exc:
        return _session_error(exc, "update_session")
    return _json_private(updated)


@sessions_router.delete("/api/sessions/{session_id}")
async def delete_session(request: Request, session_id: str):
    """Delete a session; its room is removed best-effort afterwards."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(session_id):
        return _private_error({"error": "bad_request", "detail": "invalid_session_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        await asyncio.to_thread(_scheduler().delete, caller, session_id)
    except Exception as exc:
        return _session_error(exc, "delete_session")
    return _no_content()

"""Live session scheduling with external video rooms.

Why:
    A live session needs a provider room before the row is written. The
    provider call and the inserts cannot share a transaction, so every later
    failure runs one best-effort compensating delete:

    1. create room (`exp = scheduled_at + 3h`); failure -> nothing written
    2. insert session row; failure -> delete room
    3. insert attendee rows; failure -> delete session row, delete room

    Compensations are logged, never retried. There is no idempotency key, so a
    client retry after a timeout can create a second session and room.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from identity_access.callers import Caller, can_manage_course, owns_course
from teaching.rooms import RoomProvider

from .common import (
    ensure_students_exist,
    normalize_id_list,
    normalize_title,
    parse_datetime,
)

logger = logging.getLogger("campus.teaching")

ROOM_EXPIRY_AFTER_START = timedelta(hours=3)
MAX_DURATION_MINUTES = 24 * 60
_UNSET = object()


class RoomProvisioningError(RuntimeError):
    """The video provider could not create a room; nothing was persisted."""


class SessionsRepoProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def is_student_enrolled(self, course_id: str, student_id: str) -> bool:
        ...

    def create_session(self, **fields: Any) -> dict:
        ...

    def add_session_students(self, session_id: str, student_ids: Iterable[str]) -> None:
        ...

    def get_session(self, session_id: str) -> Optional[dict]:
        ...

    def list_sessions(self, **filters: Any) -> List[dict]:
        ...

    def update_session(self, session_id: str, **fields: Any) -> Optional[dict]:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def is_session_student(self, session_id: str, student_id: str) -> bool:
        ...


def _normalize_duration(value: object) -> int:
    if isinstance(value, bool):
        raise ValueError("invalid_duration_minutes")
    try:
        minutes = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError("invalid_duration_minutes") from exc
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("invalid_duration_minutes")
    if minutes < 1 or minutes > MAX_DURATION_MINUTES:
        raise ValueError("invalid_duration_minutes")
    return minutes


class SessionScheduler:
    def __init__(self, repo: SessionsRepoProtocol, rooms: RoomProvider, accounts: Any) -> None:
        self._repo = repo
        self._rooms = rooms
        self._accounts = accounts

    # --- Queries -----------------------------------------------------------------

    def list_for(self, caller: Caller) -> List[dict]:
        """Role-scoped listing: admin all, teacher own, student assigned."""
        if caller.is_admin:
            return self._repo.list_sessions()
        if caller.is_teacher:
            return self._repo.list_sessions(teacher_id=caller.teacher_id) if caller.teacher_id else []
        if caller.student_id:
            return self._repo.list_sessions(student_id=caller.student_id)
        return []

    def _session_for_manager(self, caller: Caller, session_id: str) -> dict:
        session = self._repo.get_session(session_id)
        if not session:
            raise LookupError("session_not_found")
        if caller.is_admin:
            return session
        if caller.is_teacher and caller.teacher_id and session.get("teacher_id") == caller.teacher_id:
            return session
        raise PermissionError("forbidden")

    # --- Create ------------------------------------------------------------------

    def create(
        self,
        caller: Caller,
        *,
        course_id: str,
        title: object = None,
        scheduled_at: object,
        duration_minutes: object,
        student_ids: object,
    ) -> dict:
        if caller.is_student or not (caller.is_admin or caller.is_teacher):
            raise PermissionError("forbidden")
        if caller.is_teacher and not caller.teacher_id:
            raise ValueError("teacher_profile_missing")
        course = self._repo.get_course(course_id)
        if not course:
            raise LookupError("course_not_found")
        if caller.is_teacher and not owns_course(caller, course):
            raise PermissionError("not_course_owner")
        teacher_id = caller.teacher_id if caller.is_teacher else course.get("teacher_id")

        starts_at = parse_datetime(scheduled_at, code="invalid_scheduled_at")
        minutes = _normalize_duration(duration_minutes)
        students = normalize_id_list(student_ids, required=True)
        ensure_students_exist(self._accounts, students)
        session_title = normalize_title(title, required=False) or course.get("title") or "Live session"

        exp = int((starts_at + ROOM_EXPIRY_AFTER_START).timestamp())
        try:
            room = self._rooms.create_room(exp=exp)
        except Exception as exc:
            logger.warning("room provisioning failed course=%s err=%s", course_id, exc.__class__.__name__)
            raise RoomProvisioningError(str(exc) or "room_create_failed") from exc

        try:
            session = self._repo.create_session(
                course_id=course_id,
                teacher_id=teacher_id,
                title=session_title,
                scheduled_at=starts_at,
                duration_minutes=minutes,
                status="upcoming",
                room_name=room.get("name"),
                room_url=room.get("url"),
            )
        except Exception:
            self._cleanup_room(room.get("name"), reason="session_insert_failed")
            raise

        try:
            self._repo.add_session_students(session["id"], students)
        except Exception:
            try:
                self._repo.delete_session(session["id"])
            except Exception as exc:
                logger.warning(
                    "session rollback failed session=%s err=%s", session["id"], exc.__class__.__name__
                )
            self._cleanup_room(room.get("name"), reason="attendee_insert_failed")
            raise

        return self._repo.get_session(session["id"]) or session

    def _cleanup_room(self, name: Optional[str], *, reason: str) -> None:
        if not name:
            return
        try:
            self._rooms.delete_room(name)
        except Exception as exc:
            logger.warning("room cleanup failed room=%s reason=%s err=%s", name, reason, exc.__class__.__name__)

    # --- Update / delete ---------------------------------------------------------

    def update(self, caller: Caller, session_id: str, *, title=_UNSET, scheduled_at=_UNSET, duration_minutes=_UNSET) -> dict:
        self._session_for_manager(caller, session_id)
        changes: Dict[str, Any] = {}
        if title is not _UNSET:
            changes["title"] = normalize_title(title)
        if scheduled_at is not _UNSET:
            changes["scheduled_at"] = parse_datetime(scheduled_at, code="invalid_scheduled_at")
        if duration_minutes is not _UNSET:
            changes["duration_minutes"] = _normalize_duration(duration_minutes)
        updated = self._repo.update_session(session_id, **changes)
        if not updated:
            raise LookupError("session_not_found")
        return updated

    def delete(self, caller: Caller, session_id: str) -> None:
        """Delete the row first; the provider room is removed best-effort."""
        session = self._session_for_manager(caller, session_id)
        if not self._repo.delete_session(session_id):
            raise LookupError("session_not_found")
        self._cleanup_room(session.get("room_name"), reason="session_deleted")

    # --- Join --------------------------------------------------------------------

    def join(self, caller: Caller, session_id: str, *, now: Optional[datetime] = None) -> dict:
        """Authorize joining a started session and return its join details.

        Returns `{"url", "room_url", "token"?}` where `url` is the in-app path.
        A meeting-token failure is logged and the token omitted.
        """
        session = self._repo.get_session(session_id)
        if not session:
            raise LookupError("session_not_found")
        current = now or datetime.now(timezone.utc)
        starts_at = parse_datetime(session.get("scheduled_at"), code="invalid_scheduled_at")
        if current < starts_at:
            raise PermissionError("session_not_started")

        is_owner = False
        if caller.is_admin:
            is_owner = True
        elif caller.is_teacher:
            if not caller.teacher_id or session.get("teacher_id") != caller.teacher_id:
                raise PermissionError("forbidden")
            is_owner = True
        else:
            sid = caller.student_id
            allowed = bool(sid) and (
                self._repo.is_session_student(session_id, sid)
                or self._repo.is_student_enrolled(session["course_id"], sid)
            )
            if not allowed:
                raise PermissionError("forbidden")

        out: Dict[str, Any] = {"url": f"/sessions/{session_id}", "room_url": session.get("room_url")}
        room_name = session.get("room_name")
        if room_name:
            try:
                out["token"] = self._rooms.create_meeting_token(
                    room_name=room_name,
                    user_name=caller.name or None,
                    is_owner=is_owner,
                    exp=int((starts_at + ROOM_EXPIRY_AFTER_START).timestamp()),
                )
            except Exception as exc:
                logger.warning("meeting token failed session=%s err=%s", session_id, exc.__class__.__name__)
        return out

    def course_sessions(self, caller: Caller, course: dict) -> List[dict]:
        if can_manage_course(caller, course):
            return self._repo.list_sessions(course_id=course["id"])
        if caller.is_student and caller.student_id and self._repo.is_student_enrolled(course["id"], caller.student_id):
            return self._repo.list_sessions(course_id=course["id"], student_id=caller.student_id)
        raise PermissionError("forbidden")


__all__ = ["SessionScheduler", "RoomProvisioningError", "ROOM_EXPIRY_AFTER_START"]

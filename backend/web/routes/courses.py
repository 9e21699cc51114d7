"""
Course API routes: catalogue, enrollment, calendar and course files.

Why:
    Courses are the anchor of every other resource. The adapter checks the
    caller's role, delegates writes to `CourseService` and keeps reads simple
    role-scoped repository queries.

Permissions:
    - Admins: every course; create for any teacher; delete.
    - Teachers: create (owner = self), update and enroll on owned courses.
    - Students: read enrolled courses, their sessions, calendar and files.

Notes:
    - Course creation with a curriculum is not atomic. The response lists the
      curriculum steps that failed (`failures`) next to the created rows.
    - File bytes go to the storage bucket; rows keep the public URL.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, List, Union

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.callers import can_manage_course, can_view_course
from repos import get_accounts_repo, get_room_provider, get_teaching_repo
from storage.config import get_course_files_bucket, get_course_files_max_upload_bytes
from teaching.calendar import course_calendar_items, group_by_week
from teaching.services.common import is_uuid_like
from teaching.services.courses import CourseService
from teaching.services.sessions import SessionScheduler
from teaching.storage import (
    NullStorageAdapter,
    StorageAdapterProtocol,
    course_file_key,
    storage_key_from_public_url,
)

from .common import (
    _csrf_guard,
    _error_from_exception,
    _json_private,
    _no_content,
    _private_error,
    _require_caller,
)

courses_router = APIRouter(tags=["Courses"])  # explicit paths below
logger = logging.getLogger("campus.web.courses")

STORAGE_ADAPTER: StorageAdapterProtocol = NullStorageAdapter()


def set_storage_adapter(adapter: StorageAdapterProtocol) -> None:
    """Allow tests and startup wiring to provide a storage adapter."""
    global STORAGE_ADAPTER
    STORAGE_ADAPTER = adapter


def _storage() -> StorageAdapterProtocol:
    if isinstance(STORAGE_ADAPTER, NullStorageAdapter):
        # Supabase may not have been reachable at startup; retry lazily.
        from storage_wiring import wire_supabase_adapter_if_configured

        wire_supabase_adapter_if_configured()
    return STORAGE_ADAPTER


def _service() -> CourseService:
    return CourseService(get_teaching_repo(), get_accounts_repo(), get_room_provider())


# --- Request models ---------------------------------------------------------------


class _CourseFields(BaseModel):
    description: str | None = Field(default=None, max_length=10_000)
    category: str | None = Field(default=None, max_length=100)
    level: str | None = Field(default=None, max_length=100)
    what_students_will_learn: Union[str, List[str], None] = None
    cover_image: str | None = Field(default=None, max_length=2048)
    tenure_start: str | None = None
    tenure_end: str | None = None

    @field_validator("description", "category", "level", "cover_image", "tenure_start", "tenure_end")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class CourseCreate(_CourseFields):
    title: str = Field(..., min_length=1, max_length=200)
    teacher_id: str | None = None
    student_ids: List[str] = Field(default_factory=list)
    curriculum: List[dict] = Field(default_factory=list)


class CourseUpdate(_CourseFields):
    title: str | None = Field(default=None, max_length=200)
    teacher_id: str | None = None


class EnrollPayload(BaseModel):
    student_ids: List[str] = Field(..., min_length=1)


# --- Helpers ----------------------------------------------------------------------


def _load_course(course_id: str):
    """Return (course, error_response) for a path id."""
    if not is_uuid_like(course_id):
        return None, _private_error({"error": "bad_request", "detail": "invalid_course_id"}, status_code=400)
    course = get_teaching_repo().get_course(course_id)
    if not course:
        return None, _private_error({"error": "not_found"}, status_code=404)
    return course, None


def _visible_course(request: Request, course_id: str):
    """Return (caller, course, error_response) for read endpoints."""
    caller, error = _require_caller(request)
    if error:
        return None, None, error
    course, error = _load_course(course_id)
    if error:
        return None, None, error
    if not can_view_course(caller, course, get_teaching_repo()):
        return None, None, _private_error({"error": "forbidden"}, status_code=403)
    return caller, course, None


# --- Courses ----------------------------------------------------------------------


@courses_router.get("/api/courses")
async def list_courses(request: Request):
    """List courses visible to the caller (admin all, teacher owned, student enrolled)."""
    caller, error = _require_caller(request)
    if error:
        return error
    repo = get_teaching_repo()
    if caller.is_admin:
        items = repo.list_courses()
    elif caller.is_teacher:
        items = repo.list_courses(teacher_id=caller.teacher_id) if caller.teacher_id else []
    else:
        items = repo.list_courses(student_id=caller.student_id) if caller.student_id else []
    return _json_private(items)


@courses_router.post("/api/courses")
async def create_course(request: Request, payload: CourseCreate):
    """Create a course with optional enrollment and curriculum.

    Behavior:
        - 201 with `{course, sessions, assignments, quizzes, failures}`
        - 400 on invalid fields (`invalid_title`, `invalid_teacher`, ...)
        - 403 for students

    Permissions:
        Admin (must name `teacher_id`) or teacher (owner = caller).
    """
    caller, error = _require_caller(request)
    if error:
        return error
    if not (caller.is_admin or caller.is_teacher):
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    data = payload.model_dump(mode="python", exclude_unset=True)
    try:
        result = _service().create(
            caller,
            title=data.pop("title"),
            teacher_id=data.pop("teacher_id", None),
            student_ids=data.pop("student_ids", None),
            curriculum=data.pop("curriculum", None),
            **data,
        )
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_course")
    if result.failures:
        logger.warning("course %s created with %d failed steps", result.course_id, len(result.failures))
    body = {
        "course": result.course,
        "sessions": result.sessions,
        "assignments": result.assignments,
        "quizzes": result.quizzes,
        "failures": result.failures,
    }
    return _json_private(body, status_code=201)


@courses_router.get("/api/courses/{course_id}")
async def get_course(request: Request, course_id: str):
    """Course detail; managers also receive the enrolled students."""
    caller, course, error = _visible_course(request, course_id)
    if error:
        return error
    out = dict(course)
    if can_manage_course(caller, course):
        out["students"] = get_teaching_repo().list_course_students(course_id)
    return _json_private(out)


@courses_router.patch("/api/courses/{course_id}")
async def update_course(request: Request, course_id: str, payload: CourseUpdate):
    """Update course fields (admin or owner; `teacher_id` admin only)."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(course_id):
        return _private_error({"error": "bad_request", "detail": "invalid_course_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        updated = _service().update(caller, course_id, **payload.model_dump(mode="python", exclude_unset=True))
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="update_course")
    return _json_private(updated)


@courses_router.delete("/api/courses/{course_id}")
async def delete_course(request: Request, course_id: str):
    """Delete a course (admin only); session rooms are removed best-effort."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(course_id):
        return _private_error({"error": "bad_request", "detail": "invalid_course_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        await asyncio.to_thread(_service().delete, caller, course_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="delete_course")
    return _no_content()


# --- Enrollment -------------------------------------------------------------------


@courses_router.get("/api/courses/{course_id}/students")
async def list_course_students(request: Request, course_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    course, error = _load_course(course_id)
    if error:
        return error
    if not can_manage_course(caller, course):
        return _private_error({"error": "forbidden"}, status_code=403)
    return _json_private(get_teaching_repo().list_course_students(course_id))


@courses_router.post("/api/courses/{course_id}/students")
async def enroll_students(request: Request, course_id: str, payload: EnrollPayload):
    """Enroll students (idempotent per pair); admin or owning teacher."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(course_id):
        return _private_error({"error": "bad_request", "detail": "invalid_course_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _service().enroll(caller, course_id, payload.student_ids)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="enroll_students")
    return _json_private(get_teaching_repo().list_course_students(course_id), status_code=201)


@courses_router.delete("/api/courses/{course_id}/students/{student_id}")
async def unenroll_student(request: Request, course_id: str, student_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(course_id) or not is_uuid_like(student_id):
        return _private_error({"error": "bad_request", "detail": "invalid_id"}, status_code=400)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _service().unenroll(caller, course_id, student_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="unenroll_student")
    return _no_content()


# --- Sessions & calendar ----------------------------------------------------------


@courses_router.get("/api/courses/{course_id}/sessions")
async def list_course_sessions(request: Request, course_id: str):
    caller, course, error = _visible_course(request, course_id)
    if error:
        return error
    scheduler = SessionScheduler(get_teaching_repo(), get_room_provider(), get_accounts_repo())
    try:
        items = scheduler.course_sessions(caller, course)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="list_course_sessions")
    return _json_private(items)


@courses_router.get("/api/courses/{course_id}/calendar")
async def course_calendar(request: Request, course_id: str):
    """Sessions, assignments and quizzes grouped into course weeks.

    Weeks count from `tenure_start` (or the course creation date). Students
    only see items assigned to them.
    """
    caller, course, error = _visible_course(request, course_id)
    if error:
        return error
    repo = get_teaching_repo()
    student_id = None if can_manage_course(caller, course) else caller.student_id
    sessions = repo.list_sessions(course_id=course_id, student_id=student_id)
    assignments = repo.list_assignments(course_id=course_id, student_id=student_id)
    quizzes = repo.list_quizzes(course_id=course_id, student_id=student_id)
    start = course.get("tenure_start") or course.get("created_at")
    try:
        weeks = group_by_week(start, course_calendar_items(sessions, assignments, quizzes))
    except ValueError as exc:
        return _error_from_exception(exc, log=logger)
    return _json_private({"start": start, "weeks": weeks})


# --- Files ------------------------------------------------------------------------


@courses_router.get("/api/courses/{course_id}/files")
async def list_course_files(request: Request, course_id: str):
    _, _, error = _visible_course(request, course_id)
    if error:
        return error
    return _json_private(get_teaching_repo().list_course_files(course_id))


@courses_router.post("/api/courses/{course_id}/files")
async def upload_course_file(request: Request, course_id: str):
    """Upload a course file (multipart field `file`).

    Behavior:
        - 201 with the file row (`file_path` = public URL)
        - 400 `missing_file` / `file_too_large`
        - 503 `storage_unavailable` when no storage adapter is configured
        - When the row insert fails the uploaded object is removed best-effort.
    """
    caller, error = _require_caller(request)
    if error:
        return error
    course, error = _load_course(course_id)
    if error:
        return error
    if not can_manage_course(caller, course):
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf

    form = await request.form()
    upload: Any = form.get("file")
    if upload is None or not hasattr(upload, "read") or not getattr(upload, "filename", None):
        return _private_error({"error": "bad_request", "detail": "missing_file"}, status_code=400)
    limit = get_course_files_max_upload_bytes()
    size = getattr(upload, "size", None)
    if isinstance(size, int) and size > limit:
        return _private_error({"error": "bad_request", "detail": "file_too_large"}, status_code=400)
    # Never buffer more than one byte past the limit.
    body = await upload.read(limit + 1)
    if not body:
        return _private_error({"error": "bad_request", "detail": "missing_file"}, status_code=400)
    if len(body) > limit:
        return _private_error({"error": "bad_request", "detail": "file_too_large"}, status_code=400)

    filename = str(upload.filename)[:255]
    mime = getattr(upload, "content_type", None) or "application/octet-stream"
    bucket = get_course_files_bucket()
    key = course_file_key(course_id, secrets.token_hex(8), filename)
    storage = _storage()
    try:
        await asyncio.to_thread(storage.upload, bucket=bucket, key=key, body=body, content_type=mime)
        url = await asyncio.to_thread(storage.public_url, bucket=bucket, key=key)
    except RuntimeError as exc:
        logger.warning("course file upload failed course=%s err=%s", course_id, exc)
        return _private_error({"error": "service_unavailable", "detail": "storage_unavailable"}, status_code=503)

    try:
        row = get_teaching_repo().create_course_file(course_id, file_name=filename, file_path=url, mime=mime)
    except Exception as exc:
        try:
            await asyncio.to_thread(storage.delete_object, bucket=bucket, key=key)
        except Exception as cleanup_exc:
            logger.warning("orphaned course file key=%s err=%s", key, cleanup_exc.__class__.__name__)
        return _error_from_exception(exc, log=logger, context="create_course_file")
    return _json_private(row, status_code=201)


@courses_router.delete("/api/courses/{course_id}/files/{file_id}")
async def delete_course_file(request: Request, course_id: str, file_id: str):
    """Delete the row first; the storage object is removed best-effort."""
    caller, error = _require_caller(request)
    if error:
        return error
    course, error = _load_course(course_id)
    if error:
        return error
    if not can_manage_course(caller, course):
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    repo = get_teaching_repo()
    row = repo.get_course_file(course_id, file_id) if is_uuid_like(file_id) else None
    if not row:
        return _private_error({"error": "not_found"}, status_code=404)
    repo.delete_course_file(course_id, file_id)
    try:
        key = storage_key_from_public_url(row.get("file_path") or "", course_id)
        await asyncio.to_thread(_storage().delete_object, bucket=get_course_files_bucket(), key=key)
    except Exception as exc:
        logger.warning("course file object not removed file=%s err=%s", file_id, exc.__class__.__name__)
    return _no_content()

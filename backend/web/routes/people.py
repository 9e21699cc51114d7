"""
People directory API routes (students, teachers) and admin statistics.

Why:
    Admins manage accounts for both roles; teachers need the student list to
    enroll students and assign coursework.

Permissions:
    - Students: list/read for admins and teachers; writes admin only.
    - Teachers: list/read/write admin only.
    - `/api/admin/stats`: admin only.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from identity_access.accounts import AccountsService, list_people
from repos import get_accounts_repo, get_teaching_repo
from teaching.services.common import is_uuid_like

from .common import (
    _csrf_guard,
    _error_from_exception,
    _json_private,
    _no_content,
    _private_error,
    _require_caller,
)

people_router = APIRouter(tags=["People"])
logger = logging.getLogger("campus.web.people")


class _PersonFields(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=200)
    join_date: str | None = None
    image_url: str | None = Field(default=None, max_length=2048)

    @field_validator("name", "phone", "join_date", "image_url")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class StudentCreate(_PersonFields):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)
    student_number: str | None = Field(default=None, max_length=200)
    fee_status: str | None = Field(default=None, max_length=32)
    gender: str | None = Field(default=None, max_length=200)


class StudentUpdate(_PersonFields):
    email: str | None = Field(default=None, max_length=320)
    password: str | None = Field(default=None, max_length=1024)
    student_number: str | None = Field(default=None, max_length=200)
    fee_status: str | None = Field(default=None, max_length=32)
    gender: str | None = Field(default=None, max_length=200)


class TeacherCreate(_PersonFields):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)
    qualification: str | None = Field(default=None, max_length=200)


class TeacherUpdate(_PersonFields):
    email: str | None = Field(default=None, max_length=320)
    password: str | None = Field(default=None, max_length=1024)
    qualification: str | None = Field(default=None, max_length=200)


def _service() -> AccountsService:
    return AccountsService(get_accounts_repo())


def _require_roles(request: Request, *roles: str):
    caller, error = _require_caller(request)
    if error:
        return None, error
    if caller.role not in roles:
        return None, _private_error({"error": "forbidden"}, status_code=403)
    return caller, None


def _write_guard(request: Request, person_id: str | None = None):
    _, error = _require_roles(request, "admin")
    if error:
        return error
    if person_id is not None and not is_uuid_like(person_id):
        return _private_error({"error": "bad_request", "detail": "invalid_id"}, status_code=400)
    return _csrf_guard(request)


# --- Students ---------------------------------------------------------------------


@people_router.get("/api/students")
async def list_students(request: Request):
    _, error = _require_roles(request, "admin", "teacher")
    if error:
        return error
    return _json_private(list_people(get_accounts_repo(), "student"))


@people_router.post("/api/students")
async def create_student(request: Request, payload: StudentCreate):
    """Create a student account (user, credential, profile); admin only."""
    error = _write_guard(request)
    if error:
        return error
    data = payload.model_dump(mode="python", exclude_unset=True)
    try:
        student = _service().create_student(**data)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_student")
    return _json_private(student, status_code=201)


@people_router.get("/api/students/{student_id}")
async def get_student(request: Request, student_id: str):
    _, error = _require_roles(request, "admin", "teacher")
    if error:
        return error
    student = get_accounts_repo().get_student(student_id) if is_uuid_like(student_id) else None
    if not student:
        return _private_error({"error": "not_found"}, status_code=404)
    return _json_private(student)


@people_router.patch("/api/students/{student_id}")
async def update_student(request: Request, student_id: str, payload: StudentUpdate):
    error = _write_guard(request, student_id)
    if error:
        return error
    try:
        student = _service().update_student(student_id, **payload.model_dump(mode="python", exclude_unset=True))
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="update_student")
    return _json_private(student)


@people_router.delete("/api/students/{student_id}")
async def delete_student(request: Request, student_id: str):
    error = _write_guard(request, student_id)
    if error:
        return error
    try:
        _service().delete_student(student_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="delete_student")
    return _no_content()


# --- Teachers ---------------------------------------------------------------------


@people_router.get("/api/teachers")
async def list_teachers(request: Request):
    _, error = _require_roles(request, "admin")
    if error:
        return error
    return _json_private(list_people(get_accounts_repo(), "teacher"))


@people_router.post("/api/teachers")
async def create_teacher(request: Request, payload: TeacherCreate):
    error = _write_guard(request)
    if error:
        return error
    data = payload.model_dump(mode="python", exclude_unset=True)
    try:
        teacher = _service().create_teacher(**data)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_teacher")
    return _json_private(teacher, status_code=201)


@people_router.get("/api/teachers/{teacher_id}")
async def get_teacher(request: Request, teacher_id: str):
    _, error = _require_roles(request, "admin")
    if error:
        return error
    teacher = get_accounts_repo().get_teacher(teacher_id) if is_uuid_like(teacher_id) else None
    if not teacher:
        return _private_error({"error": "not_found"}, status_code=404)
    return _json_private(teacher)


@people_router.patch("/api/teachers/{teacher_id}")
async def update_teacher(request: Request, teacher_id: str, payload: TeacherUpdate):
    error = _write_guard(request, teacher_id)
    if error:
        return error
    try:
        teacher = _service().update_teacher(teacher_id, **payload.model_dump(mode="python", exclude_unset=True))
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="update_teacher")
    return _json_private(teacher)


@people_router.delete("/api/teachers/{teacher_id}")
async def delete_teacher(request: Request, teacher_id: str):
    error = _write_guard(request, teacher_id)
    if error:
        return error
    try:
        _service().delete_teacher(teacher_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="delete_teacher")
    return _no_content()


# --- Admin ------------------------------------------------------------------------


@people_router.get("/api/admin/stats")
async def admin_stats(request: Request):
    """Dashboard counts (teachers, students, courses); admin only."""
    _, error = _require_roles(request, "admin")
    if error:
        return error
    accounts = get_accounts_repo()
    body = {
        "teachers": accounts.count_users("teacher"),
        "students": accounts.count_users("student"),
        "courses": get_teaching_repo().count_courses(),
    }
    return _json_private(body)

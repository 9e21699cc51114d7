"""
Assignment and quiz API routes.

Permissions:
    - Create: admin or the teacher owning the course (students -> 403).
    - Delete / grade / score override: admin or the authoring teacher.
    - Submit: assigned students only.
    - List: role-scoped; students only see their own submissions and never
      the quiz answer keys.
"""

from __future__ import annotations

import logging
from typing import Any, List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from repos import get_accounts_repo, get_teaching_repo
from teaching.services.common import is_uuid_like
from teaching.services.coursework import AssignmentService, QuizService

from .common import (
    _csrf_guard,
    _error_from_exception,
    _json_private,
    _no_content,
    _private_error,
    _require_caller,
)

coursework_router = APIRouter(tags=["Coursework"])
logger = logging.getLogger("campus.web.coursework")


def _assignments() -> AssignmentService:
    return AssignmentService(get_teaching_repo(), get_accounts_repo())


def _quizzes() -> QuizService:
    return QuizService(get_teaching_repo(), get_accounts_repo())


class AttachmentIn(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=1024)
    file_name: str = Field(..., min_length=1, max_length=255)
    mime: str | None = Field(default=None, max_length=255)


class AssignmentCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    due_at: str | None = None
    total_marks: int | None = None
    min_pass_marks: int | None = None
    student_ids: List[str] = Field(default_factory=list)
    attachments: List[AttachmentIn] = Field(default_factory=list)


class AssignmentSubmit(BaseModel):
    content: Any = None
    attachments: List[AttachmentIn] = Field(default_factory=list)


class GradePayload(BaseModel):
    grade: float


class QuestionIn(BaseModel):
    question_text: str = Field(..., min_length=1, max_length=2000)
    question_type: str = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_answer: str | None = None
    points: int = 1
    sort_order: int | None = None


class QuizCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    due_at: str | None = None
    total_marks: int | None = None
    attachment_required: bool = False
    student_ids: List[str] = Field(default_factory=list)
    questions: List[QuestionIn] = Field(default_factory=list)


class QuizSubmit(BaseModel):
    answers: dict = Field(default_factory=dict)


class ScorePayload(BaseModel):
    score: float


def _questions(items: List[QuestionIn]) -> List[dict]:
    out = []
    for position, q in enumerate(items):
        data = q.model_dump(mode="python")
        if data.get("sort_order") is None:
            data["sort_order"] = position
        out.append(data)
    return out


def _bad_id(detail: str):
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


# --- Assignments ------------------------------------------------------------------


@coursework_router.get("/api/assignments")
async def list_assignments(request: Request):
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private(_assignments().list_for(caller))


@coursework_router.post("/api/assignments")
async def create_assignment(request: Request, payload: AssignmentCreate):
    """Create an assignment for selected students of a course.

    Behavior:
        - 201 with the assignment (students, attachments)
        - 400 on invalid input (empty `student_ids`, bad marks)
        - 403 for students and non-owning teachers
    """
    caller, error = _require_caller(request)
    if error:
        return error
    if caller.is_student:
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    data = payload.model_dump(mode="python")
    try:
        created = _assignments().create(caller, **data)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_assignment")
    return _json_private(created, status_code=201)


@coursework_router.delete("/api/assignments/{assignment_id}")
async def delete_assignment(request: Request, assignment_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(assignment_id):
        return _bad_id("invalid_assignment_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _assignments().delete(caller, assignment_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="delete_assignment")
    return _no_content()


@coursework_router.post("/api/assignments/{assignment_id}/submit")
async def submit_assignment(request: Request, assignment_id: str, payload: AssignmentSubmit):
    """Create or replace the caller's submission (one per student)."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(assignment_id):
        return _bad_id("invalid_assignment_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    data = payload.model_dump(mode="python")
    try:
        submission = _assignments().submit(caller, assignment_id, content=data["content"], attachments=data["attachments"])
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="submit_assignment")
    return _json_private(submission, status_code=201)


@coursework_router.post("/api/submissions/{submission_id}/grade")
async def grade_submission(request: Request, submission_id: str, payload: GradePayload):
    """Grade a submission; `0 <= grade <= total_marks` else 400 `invalid_grade`."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(submission_id):
        return _bad_id("invalid_submission_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        graded = _assignments().grade(caller, submission_id, payload.grade)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="grade_submission")
    return _json_private(graded)


# --- Quizzes ----------------------------------------------------------------------


@coursework_router.get("/api/quizzes")
async def list_quizzes(request: Request):
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private(_quizzes().list_for(caller))


@coursework_router.post("/api/quizzes")
async def create_quiz(request: Request, payload: QuizCreate):
    caller, error = _require_caller(request)
    if error:
        return error
    if caller.is_student:
        return _private_error({"error": "forbidden"}, status_code=403)
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    data = payload.model_dump(mode="python", exclude={"questions"})
    try:
        created = _quizzes().create(caller, questions=_questions(payload.questions), **data)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_quiz")
    return _json_private(created, status_code=201)


@coursework_router.delete("/api/quizzes/{quiz_id}")
async def delete_quiz(request: Request, quiz_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(quiz_id):
        return _bad_id("invalid_quiz_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _quizzes().delete(caller, quiz_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="delete_quiz")
    return _no_content()


@coursework_router.post("/api/quizzes/{quiz_id}/submit")
async def submit_quiz(request: Request, quiz_id: str, payload: QuizSubmit):
    """Score the answers automatically and store the caller's submission."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(quiz_id):
        return _bad_id("invalid_quiz_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        submission = _quizzes().submit(caller, quiz_id, payload.answers)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="submit_quiz")
    return _json_private(submission, status_code=201)


@coursework_router.patch("/api/quizzes/submissions/{submission_id}")
async def override_quiz_score(request: Request, submission_id: str, payload: ScorePayload):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(submission_id):
        return _bad_id("invalid_submission_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        updated = _quizzes().override_score(caller, submission_id, payload.score)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="override_quiz_score")
    return _json_private(updated)

"""Course use cases: creation with curriculum, update, delete, enrollment.

Why:
    Creating a course is the one multi-step write in the product: the course
    row, its enrollments and every curriculum item (lecture -> live session,
    assignment, quiz) are separate inserts without a spanning transaction.

Behavior:
    - The course insert is fatal: any failure aborts the request.
    - Enrollment and each curriculum sub-insert are best-effort. Failures are
      logged, recorded on the result and do not stop later items, so a course
      can be created while some curriculum rows are missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from identity_access.callers import Caller, can_manage_course

from .common import (
    ensure_students_exist,
    normalize_id_list,
    normalize_marks,
    normalize_text,
    normalize_title,
    parse_optional_date,
    parse_optional_datetime,
)

logger = logging.getLogger("campus.teaching")

LESSON_TYPES = frozenset({"lecture", "assignment", "quiz"})
LECTURE_DURATION_MINUTES = 60
DEFAULT_TOTAL_MARKS = 100
_FALLBACK_PREFIX = {"lecture": "Session", "assignment": "Assignment", "quiz": "Quiz"}

_COURSE_TEXT_FIELDS = ("description", "category", "level", "what_students_will_learn", "cover_image")


class CoursesRepoProtocol(Protocol):
    def create_course(self, *, title: str, teacher_id: str | None, **fields: Any) -> dict:
        ...

    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def update_course(self, course_id: str, **fields: Any) -> Optional[dict]:
        ...

    def delete_course(self, course_id: str) -> bool:
        ...

    def add_course_students(self, course_id: str, student_ids: Iterable[str]) -> None:
        ...

    def remove_course_student(self, course_id: str, student_id: str) -> bool:
        ...

    def list_sessions(self, *, course_id: str | None = None, **_: Any) -> List[dict]:
        ...

    def create_session(self, **fields: Any) -> dict:
        ...

    def create_assignment(self, **fields: Any) -> dict:
        ...

    def add_assignment_students(self, assignment_id: str, student_ids: Iterable[str]) -> None:
        ...

    def create_quiz(self, **fields: Any) -> dict:
        ...

    def add_quiz_students(self, quiz_id: str, student_ids: Iterable[str]) -> None:
        ...


@dataclass
class CourseCreationResult:
    course: dict
    sessions: List[dict] = field(default_factory=list)
    assignments: List[dict] = field(default_factory=list)
    quizzes: List[dict] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def course_id(self) -> str:
        return str(self.course.get("id"))

    def record_failure(self, step: str, exc: BaseException, **context: Any) -> None:
        entry = {"step": step, "error": exc.__class__.__name__, **context}
        self.failures.append(entry)
        logger.warning(
            "course %s: %s failed err=%s context=%s",
            self.course_id,
            step,
            exc.__class__.__name__,
            context,
        )


def _normalize_learning_outcomes(value: object) -> Optional[str]:
    """Accept a list of bullet points or a block of text."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        lines = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("invalid_what_students_will_learn")
            if item.strip():
                lines.append(item.strip())
        return "\n".join(lines) or None
    return normalize_text(value, code="invalid_what_students_will_learn")


def _course_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in _COURSE_TEXT_FIELDS:
        if key not in raw:
            continue
        if key == "what_students_will_learn":
            out[key] = _normalize_learning_outcomes(raw[key])
        else:
            out[key] = normalize_text(raw[key], code=f"invalid_{key}")
    if "tenure_start" in raw:
        out["tenure_start"] = parse_optional_date(raw["tenure_start"], code="invalid_tenure_start")
    if "tenure_end" in raw:
        out["tenure_end"] = parse_optional_date(raw["tenure_end"], code="invalid_tenure_end")
    start, end = out.get("tenure_start"), out.get("tenure_end")
    if start and end and end < start:
        raise ValueError("invalid_tenure_end")
    return out


def _normalize_curriculum(value: object) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("invalid_curriculum")
    sections: List[Dict[str, Any]] = []
    for section in value:
        if not isinstance(section, dict):
            raise ValueError("invalid_curriculum")
        lessons = section.get("lessons") or []
        if not isinstance(lessons, (list, tuple)):
            raise ValueError("invalid_curriculum")
        normalized_lessons = []
        for lesson in lessons:
            if not isinstance(lesson, dict) or lesson.get("type") not in LESSON_TYPES:
                raise ValueError("invalid_lesson_type")
            normalized_lessons.append(lesson)
        sections.append({"title": section.get("title"), "lessons": normalized_lessons})
    return sections


class CourseService:
    """Course lifecycle for admins and owning teachers."""

    def __init__(self, repo: CoursesRepoProtocol, accounts: Any, rooms: Any = None) -> None:
        self._repo = repo
        self._accounts = accounts
        self._rooms = rooms

    # --- Creation ----------------------------------------------------------------

    def _resolve_owner(self, caller: Caller, requested: object) -> Optional[str]:
        if caller.is_teacher:
            if not caller.teacher_id:
                raise ValueError("teacher_profile_missing")
            return caller.teacher_id
        if not caller.is_admin:
            raise PermissionError("forbidden")
        if requested is None or requested == "":
            raise ValueError("invalid_teacher")
        if not isinstance(requested, str) or not self._accounts.get_teacher(requested):
            raise ValueError("invalid_teacher")
        return requested

    def create(
        self,
        caller: Caller,
        *,
        title: object,
        teacher_id: object = None,
        student_ids: object = None,
        curriculum: object = None,
        **fields: Any,
    ) -> CourseCreationResult:
        """Create a course, enroll students and expand the curriculum.

        Only validation errors and the course insert itself are raised; every
        later step is logged and collected in `CourseCreationResult.failures`.
        """
        owner = self._resolve_owner(caller, teacher_id)
        normalized_title = normalize_title(title)
        extras = _course_fields(fields)
        students = normalize_id_list(student_ids)
        ensure_students_exist(self._accounts, students)
        sections = _normalize_curriculum(curriculum)

        course = self._repo.create_course(title=normalized_title, teacher_id=owner, **extras)
        result = CourseCreationResult(course=course)

        if students:
            try:
                self._repo.add_course_students(result.course_id, students)
            except Exception as exc:
                result.record_failure("enroll_students", exc, count=len(students))

        for section in sections:
            for position, lesson in enumerate(section["lessons"]):
                self._create_lesson(result, owner, section, position, lesson, students)

        try:
            refreshed = self._repo.get_course(result.course_id)
        except Exception as exc:
            result.record_failure("refresh_course", exc)
        else:
            if refreshed:
                result.course = refreshed
        return result

    def _create_lesson(
        self,
        result: CourseCreationResult,
        owner: Optional[str],
        section: Dict[str, Any],
        position: int,
        lesson: Dict[str, Any],
        students: List[str],
    ) -> None:
        kind = lesson["type"]
        section_title = (section.get("title") or "").strip() if isinstance(section.get("title"), str) else ""
        fallback = f"{_FALLBACK_PREFIX[kind]} from {section_title or 'Untitled Section'}"
        context = {"section": section_title or None, "position": position, "type": kind}
        try:
            lesson_title = normalize_title(lesson.get("title"), required=False) or fallback
            when = parse_optional_datetime(lesson.get("scheduled_at"), code="invalid_scheduled_at") or datetime.now(timezone.utc)
            total_marks = normalize_marks(lesson.get("total_marks"), code="invalid_total_marks", default=DEFAULT_TOTAL_MARKS, minimum=1)
            description = normalize_text(lesson.get("description"), code="invalid_description")
        except ValueError as exc:
            result.record_failure(f"create_{kind}", exc, **context)
            return

        if kind == "lecture":
            try:
                session = self._repo.create_session(
                    course_id=result.course_id,
                    teacher_id=owner,
                    title=lesson_title,
                    scheduled_at=when,
                    duration_minutes=LECTURE_DURATION_MINUTES,
                    status="upcoming",
                )
            except Exception as exc:
                result.record_failure("create_session", exc, **context)
                return
            result.sessions.append(session)
            return

        if kind == "assignment":
            try:
                min_pass = normalize_marks(lesson.get("min_pass_marks"), code="invalid_min_pass_marks")
                assignment = self._repo.create_assignment(
                    course_id=result.course_id,
                    title=lesson_title,
                    description=description,
                    due_at=when,
                    total_marks=total_marks,
                    min_pass_marks=min_pass,
                    created_by=owner,
                )
            except Exception as exc:
                result.record_failure("create_assignment", exc, **context)
                return
            result.assignments.append(assignment)
            if students:
                try:
                    self._repo.add_assignment_students(assignment["id"], students)
                except Exception as exc:
                    result.record_failure("assign_assignment_students", exc, assignment_id=assignment["id"])
            return

        try:
            quiz = self._repo.create_quiz(
                course_id=result.course_id,
                title=lesson_title,
                description=description,
                due_at=when,
                total_marks=total_marks,
                attachment_required=bool(lesson.get("attachment_required")),
                created_by=owner,
            )
        except Exception as exc:
            result.record_failure("create_quiz", exc, **context)
            return
        result.quizzes.append(quiz)
        if students:
            try:
                self._repo.add_quiz_students(quiz["id"], students)
            except Exception as exc:
                result.record_failure("assign_quiz_students", exc, quiz_id=quiz["id"])

    # --- Update / delete ---------------------------------------------------------

    def _course_for_manager(self, caller: Caller, course_id: str) -> dict:
        course = self._repo.get_course(course_id)
        if not course:
            raise LookupError("course_not_found")
        if not can_manage_course(caller, course):
            raise PermissionError("forbidden")
        return course

    def update(self, caller: Caller, course_id: str, **fields: Any) -> dict:
        self._course_for_manager(caller, course_id)
        updates = _course_fields(fields)
        if "title" in fields:
            updates["title"] = normalize_title(fields["title"])
        if "teacher_id" in fields:
            # Reassigning ownership is an admin operation.
            if not caller.is_admin:
                raise PermissionError("forbidden")
            new_owner = fields["teacher_id"]
            if new_owner is not None and (not isinstance(new_owner, str) or not self._accounts.get_teacher(new_owner)):
                raise ValueError("invalid_teacher")
            updates["teacher_id"] = new_owner
        updated = self._repo.update_course(course_id, **updates)
        if not updated:
            raise LookupError("course_not_found")
        return updated

    def delete(self, caller: Caller, course_id: str) -> None:
        """Delete a course (admin only); its session rooms are removed best-effort."""
        if not caller.is_admin:
            raise PermissionError("forbidden")
        if not self._repo.get_course(course_id):
            raise LookupError("course_not_found")
        rooms = [s.get("room_name") for s in self._repo.list_sessions(course_id=course_id) if s.get("room_name")]
        if not self._repo.delete_course(course_id):
            raise LookupError("course_not_found")
        for name in rooms:
            try:
                self._rooms.delete_room(name)
            except Exception as exc:
                logger.warning("course %s: room cleanup failed room=%s err=%s", course_id, name, exc.__class__.__name__)

    # --- Enrollment --------------------------------------------------------------

    def enroll(self, caller: Caller, course_id: str, student_ids: object) -> List[str]:
        self._course_for_manager(caller, course_id)
        ids = normalize_id_list(student_ids, required=True)
        ensure_students_exist(self._accounts, ids)
        self._repo.add_course_students(course_id, ids)
        return ids

    def unenroll(self, caller: Caller, course_id: str, student_id: str) -> None:
        self._course_for_manager(caller, course_id)
        if not self._repo.remove_course_student(course_id, student_id):
            raise LookupError("enrollment_not_found")


__all__ = ["CourseService", "CourseCreationResult", "LESSON_TYPES"]

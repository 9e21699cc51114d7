"""Resolve an authenticated session user into a role-aware caller.

Why:
    Course ownership and enrollment reference profile ids (`teachers.id`,
    `students.id`), not user ids. Services receive a `Caller` that carries
    both so they can decide access without another lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .domain import primary_role


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str
    name: str = ""
    email: str = ""
    teacher_id: Optional[str] = None
    student_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"

    @property
    def is_student(self) -> bool:
        return self.role == "student"


def caller_from_user(user: dict, accounts: Any) -> Caller:
    """Build a `Caller` from `request.state.user` (`sub`, `roles`, ...)."""
    user_id = str(user.get("sub") or "")
    role = primary_role(user.get("roles") or [])
    teacher_id = accounts.teacher_id_for_user(user_id) if role == "teacher" else None
    student_id = accounts.student_id_for_user(user_id) if role == "student" else None
    return Caller(
        user_id=user_id,
        role=role,
        name=str(user.get("name") or ""),
        email=str(user.get("email") or ""),
        teacher_id=teacher_id,
        student_id=student_id,
    )


def owns_course(caller: Caller, course: dict | None) -> bool:
    return bool(course) and caller.is_teacher and bool(caller.teacher_id) and course.get("teacher_id") == caller.teacher_id


def can_manage_course(caller: Caller, course: dict | None) -> bool:
    """Admins manage every course; teachers only the courses they own."""
    if not course:
        return False
    return caller.is_admin or owns_course(caller, course)


def can_view_course(caller: Caller, course: dict | None, teaching: Any) -> bool:
    if can_manage_course(caller, course):
        return True
    if course and caller.is_student and caller.student_id:
        return bool(teaching.is_student_enrolled(course["id"], caller.student_id))
    return False


__all__ = ["Caller", "caller_from_user", "owns_course", "can_manage_course", "can_view_course"]

"""Assignments and quizzes: authoring, submission and grading.

Permissions:
    - Admins see and manage everything.
    - Teachers see the coursework of their own courses and manage what they
      created (or what belongs to a course they own).
    - Students see coursework assigned to them, with only their own
      submission attached, and may submit.
"""

from __future__ import annotations

from typing import Any, Dict, List

from identity_access.callers import Caller, owns_course

from .common import (
    ensure_students_exist,
    normalize_id_list,
    normalize_marks,
    normalize_text,
    normalize_title,
    parse_optional_datetime,
)
from .grading import QUESTION_TYPES, score_quiz, validate_grade

DEFAULT_TOTAL_MARKS = 100
_MAX_ATTACHMENTS = 20


def normalize_attachments(value: object) -> List[Dict[str, Any]]:
    """Validate attachment metadata `{file_path, file_name, mime?}`.

    Uploads go straight to the storage bucket; only the resulting path and
    display name are recorded here.
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or len(value) > _MAX_ATTACHMENTS:
        raise ValueError("invalid_attachments")
    out = []
    for item in value:
        if not isinstance(item, dict):
            raise ValueError("invalid_attachments")
        path = normalize_title(item.get("file_path"), code="invalid_attachments", max_length=1024)
        name = normalize_title(item.get("file_name"), code="invalid_attachments", max_length=255)
        mime = normalize_text(item.get("mime"), code="invalid_attachments", max_length=255)
        out.append({"file_path": path, "file_name": name, "mime": mime})
    return out


def _normalize_questions(value: object) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("invalid_questions")
    out = []
    for position, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValueError("invalid_questions")
        text = normalize_title(item.get("question_text"), code="invalid_question_text", max_length=2000)
        qtype = item.get("question_type") or "multiple_choice"
        if qtype not in QUESTION_TYPES:
            raise ValueError("invalid_question_type")
        options = item.get("options") or []
        if not isinstance(options, (list, tuple)) or not all(isinstance(o, str) for o in options):
            raise ValueError("invalid_options")
        correct = item.get("correct_answer")
        if correct is not None and not isinstance(correct, str):
            raise ValueError("invalid_correct_answer")
        if qtype == "multiple_choice" and correct is not None and options and correct not in options:
            raise ValueError("invalid_correct_answer")
        points = normalize_marks(item.get("points"), code="invalid_points", default=1)
        order = item.get("sort_order", position)
        if isinstance(order, bool) or not isinstance(order, int):
            raise ValueError("invalid_sort_order")
        out.append(
            {
                "question_text": text,
                "question_type": qtype,
                "options": list(options),
                "correct_answer": correct,
                "points": points,
                "sort_order": order,
            }
        )
    return out


class _CourseworkBase:
    def __init__(self, repo: Any, accounts: Any) -> None:
        self._repo = repo
        self._accounts = accounts

    def _course_for_author(self, caller: Caller, course_id: object) -> dict:
        if caller.is_student or not (caller.is_admin or caller.is_teacher):
            raise PermissionError("forbidden")
        if caller.is_teacher and not caller.teacher_id:
            raise ValueError("teacher_profile_missing")
        if not isinstance(course_id, str) or not course_id:
            raise ValueError("invalid_course_id")
        course = self._repo.get_course(course_id)
        if not course:
            raise LookupError("course_not_found")
        if caller.is_teacher and not owns_course(caller, course):
            raise PermissionError("not_course_owner")
        return course

    def _can_manage(self, caller: Caller, item: dict) -> bool:
        if caller.is_admin:
            return True
        if not caller.is_teacher or not caller.teacher_id:
            return False
        if item.get("created_by") == caller.teacher_id:
            return True
        return owns_course(caller, self._repo.get_course(item.get("course_id")))

    def _scoped(self, caller: Caller, lister) -> List[dict]:
        if caller.is_admin:
            return lister()
        if caller.is_teacher:
            return lister(teacher_id=caller.teacher_id) if caller.teacher_id else []
        if not caller.student_id:
            return []
        rows = lister(student_id=caller.student_id)
        for row in rows:
            row["submissions"] = [s for s in row.get("submissions") or [] if s.get("student_id") == caller.student_id]
        return rows


class AssignmentService(_CourseworkBase):
    def list_for(self, caller: Caller) -> List[dict]:
        return self._scoped(caller, self._repo.list_assignments)

    def create(
        self,
        caller: Caller,
        *,
        course_id: object,
        title: object,
        description: object = None,
        due_at: object = None,
        total_marks: object = None,
        min_pass_marks: object = None,
        student_ids: object = None,
        attachments: object = None,
    ) -> dict:
        course = self._course_for_author(caller, course_id)
        normalized_title = normalize_title(title)
        marks = normalize_marks(total_marks, code="invalid_total_marks", default=DEFAULT_TOTAL_MARKS, minimum=1)
        min_pass = normalize_marks(min_pass_marks, code="invalid_min_pass_marks")
        if min_pass is not None and min_pass > marks:
            raise ValueError("invalid_min_pass_marks")
        students = normalize_id_list(student_ids, required=True)
        ensure_students_exist(self._accounts, students)
        files = normalize_attachments(attachments)

        assignment = self._repo.create_assignment(
            course_id=course["id"],
            title=normalized_title,
            description=normalize_text(description, code="invalid_description"),
            due_at=parse_optional_datetime(due_at, code="invalid_due_at"),
            total_marks=marks,
            min_pass_marks=min_pass,
            created_by=caller.teacher_id if caller.is_teacher else course.get("teacher_id"),
        )
        self._repo.add_assignment_students(assignment["id"], students)
        if files:
            self._repo.add_assignment_attachments(assignment["id"], files)
        return self._repo.get_assignment(assignment["id"]) or assignment

    def delete(self, caller: Caller, assignment_id: str) -> None:
        assignment = self._repo.get_assignment(assignment_id)
        if not assignment:
            raise LookupError("assignment_not_found")
        if not self._can_manage(caller, assignment):
            raise PermissionError("forbidden")
        self._repo.delete_assignment(assignment_id)

    def submit(self, caller: Caller, assignment_id: str, *, content: object = None, attachments: object = None) -> dict:
        """Upsert the caller's single submission; attachments are replaced."""
        if not caller.is_student or not caller.student_id:
            raise PermissionError("forbidden")
        assignment = self._repo.get_assignment(assignment_id)
        if not assignment:
            raise LookupError("assignment_not_found")
        if not self._repo.is_assignment_student(assignment_id, caller.student_id):
            raise PermissionError("not_assigned")
        if content is not None and not isinstance(content, (str, dict, list)):
            raise ValueError("invalid_content")
        files = normalize_attachments(attachments)
        if content in (None, "") and not files:
            raise ValueError("empty_submission")
        submission = self._repo.upsert_assignment_submission(assignment_id, caller.student_id, content=content)
        self._repo.replace_submission_attachments(submission["id"], files)
        return self._repo.get_assignment_submission(submission["id"]) or submission

    def grade(self, caller: Caller, submission_id: str, grade: object) -> dict:
        submission = self._repo.get_assignment_submission(submission_id)
        if not submission:
            raise LookupError("submission_not_found")
        assignment = self._repo.get_assignment(submission["assignment_id"])
        if not assignment:
            raise LookupError("assignment_not_found")
        if not self._can_manage(caller, assignment):
            raise PermissionError("forbidden")
        value = validate_grade(grade, assignment.get("total_marks") or DEFAULT_TOTAL_MARKS)
        updated = self._repo.grade_assignment_submission(submission_id, value)
        if not updated:
            raise LookupError("submission_not_found")
        return updated


class QuizService(_CourseworkBase):
    def list_for(self, caller: Caller) -> List[dict]:
        rows = self._scoped(caller, self._repo.list_quizzes)
        if caller.is_student:
            # Answer keys stay with the authors.
            for row in rows:
                row["questions"] = [
                    {k: v for k, v in q.items() if k != "correct_answer"} for q in row.get("questions") or []
                ]
        return rows

    def create(
        self,
        caller: Caller,
        *,
        course_id: object,
        title: object,
        description: object = None,
        due_at: object = None,
        total_marks: object = None,
        attachment_required: object = False,
        student_ids: object = None,
        questions: object = None,
    ) -> dict:
        course = self._course_for_author(caller, course_id)
        normalized_title = normalize_title(title)
        marks = normalize_marks(total_marks, code="invalid_total_marks", default=DEFAULT_TOTAL_MARKS, minimum=1)
        students = normalize_id_list(student_ids, required=True)
        ensure_students_exist(self._accounts, students)
        items = _normalize_questions(questions)
        if not isinstance(attachment_required, bool):
            raise ValueError("invalid_attachment_required")

        quiz = self._repo.create_quiz(
            course_id=course["id"],
            title=normalized_title,
            description=normalize_text(description, code="invalid_description"),
            due_at=parse_optional_datetime(due_at, code="invalid_due_at"),
            total_marks=marks,
            attachment_required=attachment_required,
            created_by=caller.teacher_id if caller.is_teacher else course.get("teacher_id"),
        )
        if items:
            self._repo.add_quiz_questions(quiz["id"], items)
        self._repo.add_quiz_students(quiz["id"], students)
        return self._repo.get_quiz(quiz["id"]) or quiz

    def delete(self, caller: Caller, quiz_id: str) -> None:
        quiz = self._repo.get_quiz(quiz_id)
        if not quiz:
            raise LookupError("quiz_not_found")
        if not self._can_manage(caller, quiz):
            raise PermissionError("forbidden")
        self._repo.delete_quiz(quiz_id)

    def submit(self, caller: Caller, quiz_id: str, answers: object) -> dict:
        if not caller.is_student or not caller.student_id:
            raise PermissionError("forbidden")
        quiz = self._repo.get_quiz(quiz_id)
        if not quiz:
            raise LookupError("quiz_not_found")
        if not self._repo.is_quiz_student(quiz_id, caller.student_id):
            raise PermissionError("not_assigned")
        if not isinstance(answers, dict) or not all(isinstance(k, str) for k in answers):
            raise ValueError("invalid_answers")
        questions = self._repo.list_quiz_questions(quiz_id)
        score = min(score_quiz(questions, answers), float(quiz.get("total_marks") or DEFAULT_TOTAL_MARKS))
        return self._repo.upsert_quiz_submission(quiz_id, caller.student_id, answers=answers, score=score)

    def override_score(self, caller: Caller, submission_id: str, score: object) -> dict:
        submission = self._repo.get_quiz_submission(submission_id)
        if not submission:
            raise LookupError("submission_not_found")
        quiz = self._repo.get_quiz(submission["quiz_id"])
        if not quiz:
            raise LookupError("quiz_not_found")
        if not self._can_manage(caller, quiz):
            raise PermissionError("forbidden")
        value = validate_grade(score, quiz.get("total_marks") or DEFAULT_TOTAL_MARKS, code="invalid_score")
        updated = self._repo.set_quiz_submission_score(submission_id, value)
        if not updated:
            raise LookupError("submission_not_found")
        return updated


__all__ = ["AssignmentService", "QuizService", "normalize_attachments"]

"""
In-memory persistence for development and tests.

Why:
    The API must be exercisable without Postgres. This repository mirrors the
    table layout of `supabase/migrations` with plain dataclasses and implements
    the accounts, teaching and chat repository methods used by the services.
    A single instance backs all three so that cross-domain reads (course
    teacher names, chat partners) see consistent data.

Notes:
    - Records are returned as plain dicts shaped exactly like the psycopg repos.
    - Timestamps are ISO-8601 UTC strings; inputs may be datetimes or dates.
    - Methods are intentionally small so tests can monkeypatch one of them to
      simulate a failing insert.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

_UNSET = object()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _parse(value: Optional[str]) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UserRow:
    id: str
    email: str
    name: str | None
    phone: str | None
    role: str
    created_at: str
    updated_at: str


@dataclass
class TeacherRow:
    id: str
    user_id: str
    phone: str | None
    join_date: str | None
    qualification: str | None
    image_url: str | None
    created_at: str


@dataclass
class StudentRow:
    id: str
    user_id: str
    student_number: str | None
    fee_status: str | None
    gender: str | None
    join_date: str | None
    phone: str | None
    image_url: str | None
    created_at: str


@dataclass
class CourseRow:
    id: str
    title: str
    description: str | None
    teacher_id: str | None
    category: str | None
    level: str | None
    what_students_will_learn: str | None
    cover_image: str | None
    tenure_start: str | None
    tenure_end: str | None
    created_at: str
    updated_at: str


@dataclass
class CourseFileRow:
    id: str
    course_id: str
    file_name: str
    file_path: str
    mime: str | None
    created_at: str


@dataclass
class SessionRow:
    id: str
    course_id: str
    teacher_id: str | None
    title: str
    scheduled_at: str
    duration_minutes: int
    status: str
    room_name: str | None
    room_url: str | None
    created_at: str


@dataclass
class AssignmentRow:
    id: str
    course_id: str
    title: str
    description: str | None
    due_at: str | None
    total_marks: int
    min_pass_marks: int | None
    created_by: str | None
    created_at: str


@dataclass
class AssignmentSubmissionRow:
    id: str
    assignment_id: str
    student_id: str
    content: Any
    status: str
    grade: float | None
    submitted_at: str


@dataclass
class QuizRow:
    id: str
    course_id: str
    title: str
    description: str | None
    due_at: str | None
    total_marks: int
    attachment_required: bool
    created_by: str | None
    created_at: str


@dataclass
class QuizQuestionRow:
    id: str
    quiz_id: str
    question_text: str
    question_type: str
    options: List[str]
    correct_answer: str | None
    points: float
    sort_order: int


@dataclass
class QuizSubmissionRow:
    id: str
    quiz_id: str
    student_id: str
    answers: Dict[str, Any]
    score: float | None
    submitted_at: str


@dataclass
class ConversationRow:
    id: str
    type: str
    course_id: str | None
    created_at: str
    updated_at: str


@dataclass
class MessageRow:
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: str


@dataclass
class _Tables:
    users: Dict[str, UserRow] = field(default_factory=dict)
    credentials: Dict[str, str] = field(default_factory=dict)
    teachers: Dict[str, TeacherRow] = field(default_factory=dict)
    students: Dict[str, StudentRow] = field(default_factory=dict)
    courses: Dict[str, CourseRow] = field(default_factory=dict)
    # enrollments[course_id] = [student_id, ...] in insertion order
    enrollments: Dict[str, List[str]] = field(default_factory=dict)
    course_files: Dict[str, CourseFileRow] = field(default_factory=dict)
    sessions: Dict[str, SessionRow] = field(default_factory=dict)
    session_students: Dict[str, List[str]] = field(default_factory=dict)
    assignments: Dict[str, AssignmentRow] = field(default_factory=dict)
    assignment_students: Dict[str, List[str]] = field(default_factory=dict)
    assignment_attachments: Dict[str, List[dict]] = field(default_factory=dict)
    assignment_submissions: Dict[str, AssignmentSubmissionRow] = field(default_factory=dict)
    submission_attachments: Dict[str, List[dict]] = field(default_factory=dict)
    quizzes: Dict[str, QuizRow] = field(default_factory=dict)
    quiz_questions: Dict[str, QuizQuestionRow] = field(default_factory=dict)
    quiz_students: Dict[str, List[str]] = field(default_factory=dict)
    quiz_submissions: Dict[str, QuizSubmissionRow] = field(default_factory=dict)
    conversations: Dict[str, ConversationRow] = field(default_factory=dict)
    # participants[conversation_id][user_id] = last_read_at (None = never read)
    participants: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    messages: Dict[str, MessageRow] = field(default_factory=dict)


class InMemoryRepo:
    """Accounts, teaching and chat persistence backed by dictionaries."""

    def __init__(self) -> None:
        self.t = _Tables()

    # --- Accounts: users & credentials -------------------------------------------

    def _user_dict(self, u: UserRow) -> dict:
        return asdict(u)

    def count_users(self, role: str | None = None) -> int:
        return sum(1 for u in self.t.users.values() if role is None or u.role == role)

    def list_users(self, role: str | None = None) -> List[dict]:
        rows = [u for u in self.t.users.values() if role is None or u.role == role]
        rows.sort(key=lambda u: ((u.name or "").lower(), u.email))
        return [self._user_dict(u) for u in rows]

    def get_user(self, user_id: str) -> Optional[dict]:
        u = self.t.users.get(user_id)
        return self._user_dict(u) if u else None

    def get_user_by_email(self, email: str) -> Optional[dict]:
        needle = (email or "").strip().lower()
        for u in self.t.users.values():
            if u.email == needle:
                return self._user_dict(u)
        return None

    def create_user(self, *, email: str, name: str | None, phone: str | None, role: str) -> dict:
        normalized = email.strip().lower()
        if any(u.email == normalized for u in self.t.users.values()):
            raise ValueError("email_taken")
        now = _now_iso()
        row = UserRow(id=str(uuid4()), email=normalized, name=name, phone=phone, role=role, created_at=now, updated_at=now)
        self.t.users[row.id] = row
        return self._user_dict(row)

    def update_user(self, user_id: str, *, name=_UNSET, email=_UNSET, phone=_UNSET) -> Optional[dict]:
        u = self.t.users.get(user_id)
        if not u:
            return None
        if email is not _UNSET:
            normalized = str(email).strip().lower()
            if any(o.email == normalized and o.id != user_id for o in self.t.users.values()):
                raise ValueError("email_taken")
            u.email = normalized
        if name is not _UNSET:
            u.name = name
        if phone is not _UNSET:
            u.phone = phone
        u.updated_at = _now_iso()
        return self._user_dict(u)

    def delete_user(self, user_id: str) -> bool:
        if self.t.users.pop(user_id, None) is None:
            return False
        self.t.credentials.pop(user_id, None)
        return True

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        if user_id not in self.t.users:
            raise LookupError("user_not_found")
        self.t.credentials[user_id] = password_hash

    def get_password_hash(self, user_id: str) -> Optional[str]:
        return self.t.credentials.get(user_id)

    def delete_credentials(self, user_id: str) -> None:
        self.t.credentials.pop(user_id, None)

    # --- Accounts: profiles ------------------------------------------------------

    def _teacher_view(self, p: TeacherRow) -> dict:
        u = self.t.users.get(p.user_id)
        return {
            "id": p.id,
            "user_id": p.user_id,
            "name": u.name if u else None,
            "email": u.email if u else None,
            "phone": p.phone if p.phone is not None else (u.phone if u else None),
            "join_date": p.join_date,
            "qualification": p.qualification,
            "image_url": p.image_url,
            "created_at": p.created_at,
        }

    def _student_view(self, p: StudentRow) -> dict:
        u = self.t.users.get(p.user_id)
        return {
            "id": p.id,
            "user_id": p.user_id,
            "name": u.name if u else None,
            "email": u.email if u else None,
            "phone": p.phone if p.phone is not None else (u.phone if u else None),
            "student_number": p.student_number,
            "fee_status": p.fee_status,
            "gender": p.gender,
            "join_date": p.join_date,
            "image_url": p.image_url,
            "created_at": p.created_at,
        }

    def create_teacher_profile(self, user_id: str, *, phone=None, join_date=None, qualification=None, image_url=None) -> dict:
        if user_id not in self.t.users:
            raise LookupError("user_not_found")
        row = TeacherRow(
            id=str(uuid4()),
            user_id=user_id,
            phone=phone,
            join_date=_iso(join_date),
            qualification=qualification,
            image_url=image_url,
            created_at=_now_iso(),
        )
        self.t.teachers[row.id] = row
        return self._teacher_view(row)

    def create_student_profile(
        self,
        user_id: str,
        *,
        student_number=None,
        fee_status=None,
        gender=None,
        join_date=None,
        phone=None,
        image_url=None,
    ) -> dict:
        if user_id not in self.t.users:
            raise LookupError("user_not_found")
        row = StudentRow(
            id=str(uuid4()),
            user_id=user_id,
            student_number=student_number,
            fee_status=fee_status,
            gender=gender,
            join_date=_iso(join_date),
            phone=phone,
            image_url=image_url,
            created_at=_now_iso(),
        )
        self.t.students[row.id] = row
        return self._student_view(row)

    def get_teacher(self, teacher_id: str) -> Optional[dict]:
        p = self.t.teachers.get(teacher_id)
        return self._teacher_view(p) if p else None

    def get_student(self, student_id: str) -> Optional[dict]:
        p = self.t.students.get(student_id)
        return self._student_view(p) if p else None

    def list_teachers(self) -> List[dict]:
        rows = [self._teacher_view(p) for p in self.t.teachers.values()]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    def list_students(self) -> List[dict]:
        rows = [self._student_view(p) for p in self.t.students.values()]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    def update_teacher_profile(self, teacher_id: str, **fields: Any) -> Optional[dict]:
        p = self.t.teachers.get(teacher_id)
        if not p:
            return None
        for key, value in fields.items():
            setattr(p, key, _iso(value) if key == "join_date" else value)
        return self._teacher_view(p)

    def update_student_profile(self, student_id: str, **fields: Any) -> Optional[dict]:
        p = self.t.students.get(student_id)
        if not p:
            return None
        for key, value in fields.items():
            setattr(p, key, _iso(value) if key == "join_date" else value)
        return self._student_view(p)

    def delete_teacher_profile(self, teacher_id: str) -> bool:
        if self.t.teachers.pop(teacher_id, None) is None:
            return False
        for c in self.t.courses.values():
            if c.teacher_id == teacher_id:
                c.teacher_id = None
        return True

    def delete_student_profile(self, student_id: str) -> bool:
        if self.t.students.pop(student_id, None) is None:
            return False
        for table in (self.t.enrollments, self.t.session_students, self.t.assignment_students, self.t.quiz_students):
            for key, ids in table.items():
                table[key] = [i for i in ids if i != student_id]
        return True

    def teacher_id_for_user(self, user_id: str) -> Optional[str]:
        for p in self.t.teachers.values():
            if p.user_id == user_id:
                return p.id
        return None

    def student_id_for_user(self, user_id: str) -> Optional[str]:
        for p in self.t.students.values():
            if p.user_id == user_id:
                return p.id
        return None

    # --- Teaching: courses -------------------------------------------------------

    def _person_brief(self, profile) -> Optional[dict]:
        if profile is None:
            return None
        u = self.t.users.get(profile.user_id)
        return {
            "id": profile.id,
            "user_id": profile.user_id,
            "name": u.name if u else None,
            "email": u.email if u else None,
        }

    def _course_dict(self, c: CourseRow) -> dict:
        data = asdict(c)
        data["teacher"] = self._person_brief(self.t.teachers.get(c.teacher_id)) if c.teacher_id else None
        data["student_count"] = len(self.t.enrollments.get(c.id, []))
        return data

    def _students_brief(self, ids: Iterable[str]) -> List[dict]:
        out = []
        for sid in ids:
            brief = self._person_brief(self.t.students.get(sid))
            if brief:
                out.append(brief)
        return out

    def create_course(
        self,
        *,
        title: str,
        teacher_id: str | None,
        description=None,
        category=None,
        level=None,
        what_students_will_learn=None,
        cover_image=None,
        tenure_start=None,
        tenure_end=None,
    ) -> dict:
        if teacher_id is not None and teacher_id not in self.t.teachers:
            raise LookupError("teacher_not_found")
        now = _now_iso()
        row = CourseRow(
            id=str(uuid4()),
            title=title,
            description=description,
            teacher_id=teacher_id,
            category=category,
            level=level,
            what_students_will_learn=what_students_will_learn,
            cover_image=cover_image,
            tenure_start=_iso(tenure_start),
            tenure_end=_iso(tenure_end),
            created_at=now,
            updated_at=now,
        )
        self.t.courses[row.id] = row
        self.t.enrollments[row.id] = []
        return self._course_dict(row)

    def get_course(self, course_id: str) -> Optional[dict]:
        c = self.t.courses.get(course_id)
        return self._course_dict(c) if c else None

    def list_courses(self, *, teacher_id: str | None = None, student_id: str | None = None) -> List[dict]:
        rows = list(self.t.courses.values())
        if teacher_id is not None:
            rows = [c for c in rows if c.teacher_id == teacher_id]
        if student_id is not None:
            rows = [c for c in rows if student_id in self.t.enrollments.get(c.id, [])]
        rows.sort(key=lambda c: c.created_at, reverse=True)
        return [self._course_dict(c) for c in rows]

    def count_courses(self) -> int:
        return len(self.t.courses)

    def update_course(self, course_id: str, **fields: Any) -> Optional[dict]:
        c = self.t.courses.get(course_id)
        if not c:
            return None
        for key, value in fields.items():
            setattr(c, key, _iso(value) if key in ("tenure_start", "tenure_end") else value)
        c.updated_at = _now_iso()
        return self._course_dict(c)

    def delete_course(self, course_id: str) -> bool:
        if self.t.courses.pop(course_id, None) is None:
            return False
        self.t.enrollments.pop(course_id, None)
        for fid in [f.id for f in self.t.course_files.values() if f.course_id == course_id]:
            self.t.course_files.pop(fid, None)
        for sid in [s.id for s in self.t.sessions.values() if s.course_id == course_id]:
            self.delete_session(sid)
        for aid in [a.id for a in self.t.assignments.values() if a.course_id == course_id]:
            self.delete_assignment(aid)
        for qid in [q.id for q in self.t.quizzes.values() if q.course_id == course_id]:
            self.delete_quiz(qid)
        for cid in [c.id for c in self.t.conversations.values() if c.course_id == course_id]:
            self._delete_conversation(cid)
        return True

    def add_course_students(self, course_id: str, student_ids: Iterable[str]) -> None:
        if course_id not in self.t.courses:
            raise LookupError("course_not_found")
        ids = list(student_ids)
        unknown = [sid for sid in ids if sid not in self.t.students]
        if unknown:
            raise LookupError("student_not_found")
        current = self.t.enrollments.setdefault(course_id, [])
        for sid in ids:
            if sid not in current:
                current.append(sid)

    def remove_course_student(self, course_id: str, student_id: str) -> bool:
        current = self.t.enrollments.get(course_id, [])
        if student_id not in current:
            return False
        current.remove(student_id)
        return True

    def list_course_students(self, course_id: str) -> List[dict]:
        return self._students_brief(self.t.enrollments.get(course_id, []))

    def is_student_enrolled(self, course_id: str, student_id: str) -> bool:
        return student_id in self.t.enrollments.get(course_id, [])

    # --- Teaching: course files --------------------------------------------------

    def list_course_files(self, course_id: str) -> List[dict]:
        rows = [asdict(f) for f in self.t.course_files.values() if f.course_id == course_id]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    def create_course_file(self, course_id: str, *, file_name: str, file_path: str, mime: str | None) -> dict:
        if course_id not in self.t.courses:
            raise LookupError("course_not_found")
        row = CourseFileRow(id=str(uuid4()), course_id=course_id, file_name=file_name, file_path=file_path, mime=mime, created_at=_now_iso())
        self.t.course_files[row.id] = row
        return asdict(row)

    def get_course_file(self, course_id: str, file_id: str) -> Optional[dict]:
        f = self.t.course_files.get(file_id)
        if not f or f.course_id != course_id:
            return None
        return asdict(f)

    def delete_course_file(self, course_id: str, file_id: str) -> bool:
        f = self.t.course_files.get(file_id)
        if not f or f.course_id != course_id:
            return False
        del self.t.course_files[file_id]
        return True

    # --- Teaching: live sessions -------------------------------------------------

    def _session_dict(self, s: SessionRow) -> dict:
        data = asdict(s)
        c = self.t.courses.get(s.course_id)
        data["course"] = {"id": c.id, "title": c.title} if c else None
        data["students"] = self._students_brief(self.t.session_students.get(s.id, []))
        return data

    def create_session(
        self,
        *,
        course_id: str,
        teacher_id: str | None,
        title: str,
        scheduled_at: datetime,
        duration_minutes: int,
        status: str = "upcoming",
        room_name: str | None = None,
        room_url: str | None = None,
    ) -> dict:
        if course_id not in self.t.courses:
            raise LookupError("course_not_found")
        row = SessionRow(
            id=str(uuid4()),
            course_id=course_id,
            teacher_id=teacher_id,
            title=title,
            scheduled_at=_iso(scheduled_at) or _now_iso(),
            duration_minutes=int(duration_minutes),
            status=status,
            room_name=room_name,
            room_url=room_url,
            created_at=_now_iso(),
        )
        self.t.sessions[row.id] = row
        self.t.session_students[row.id] = []
        return self._session_dict(row)

    def add_session_students(self, session_id: str, student_ids: Iterable[str]) -> None:
        if session_id not in self.t.sessions:
            raise LookupError("session_not_found")
        ids = list(student_ids)
        if any(sid not in self.t.students for sid in ids):
            raise LookupError("student_not_found")
        current = self.t.session_students.setdefault(session_id, [])
        current.extend(sid for sid in ids if sid not in current)

    def get_session(self, session_id: str) -> Optional[dict]:
        s = self.t.sessions.get(session_id)
        return self._session_dict(s) if s else None

    def list_sessions(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        rows = list(self.t.sessions.values())
        if teacher_id is not None:
            rows = [s for s in rows if s.teacher_id == teacher_id]
        if student_id is not None:
            rows = [s for s in rows if student_id in self.t.session_students.get(s.id, [])]
        if course_id is not None:
            rows = [s for s in rows if s.course_id == course_id]
        rows.sort(key=lambda s: _parse(s.scheduled_at))
        return [self._session_dict(s) for s in rows]

    def update_session(self, session_id: str, *, title=_UNSET, scheduled_at=_UNSET, duration_minutes=_UNSET) -> Optional[dict]:
        s = self.t.sessions.get(session_id)
        if not s:
            return None
        if title is not _UNSET:
            s.title = title
        if scheduled_at is not _UNSET:
            s.scheduled_at = _iso(scheduled_at)
        if duration_minutes is not _UNSET:
            s.duration_minutes = int(duration_minutes)
        return self._session_dict(s)

    def delete_session(self, session_id: str) -> bool:
        if self.t.sessions.pop(session_id, None) is None:
            return False
        self.t.session_students.pop(session_id, None)
        return True

    def is_session_student(self, session_id: str, student_id: str) -> bool:
        return student_id in self.t.session_students.get(session_id, [])

    # --- Teaching: assignments ---------------------------------------------------

    def _submission_dict(self, sub: AssignmentSubmissionRow) -> dict:
        data = asdict(sub)
        data["attachments"] = [dict(a) for a in self.t.submission_attachments.get(sub.id, [])]
        return data

    def _assignment_dict(self, a: AssignmentRow) -> dict:
        data = asdict(a)
        c = self.t.courses.get(a.course_id)
        data["course"] = {"id": c.id, "title": c.title} if c else None
        data["students"] = self._students_brief(self.t.assignment_students.get(a.id, []))
        data["attachments"] = [dict(x) for x in self.t.assignment_attachments.get(a.id, [])]
        subs = [s for s in self.t.assignment_submissions.values() if s.assignment_id == a.id]
        subs.sort(key=lambda s: s.submitted_at)
        data["submissions"] = [self._submission_dict(s) for s in subs]
        return data

    def create_assignment(
        self,
        *,
        course_id: str,
        title: str,
        description=None,
        due_at=None,
        total_marks: int = 100,
        min_pass_marks=None,
        created_by=None,
    ) -> dict:
        if course_id not in self.t.courses:
            raise LookupError("course_not_found")
        row = AssignmentRow(
            id=str(uuid4()),
            course_id=course_id,
            title=title,
            description=description,
            due_at=_iso(due_at),
            total_marks=int(total_marks),
            min_pass_marks=min_pass_marks,
            created_by=created_by,
            created_at=_now_iso(),
        )
        self.t.assignments[row.id] = row
        self.t.assignment_students[row.id] = []
        return self._assignment_dict(row)

    def add_assignment_students(self, assignment_id: str, student_ids: Iterable[str]) -> None:
        if assignment_id not in self.t.assignments:
            raise LookupError("assignment_not_found")
        ids = list(student_ids)
        if any(sid not in self.t.students for sid in ids):
            raise LookupError("student_not_found")
        current = self.t.assignment_students.setdefault(assignment_id, [])
        current.extend(sid for sid in ids if sid not in current)

    def add_assignment_attachments(self, assignment_id: str, attachments: Iterable[dict]) -> None:
        bucket = self.t.assignment_attachments.setdefault(assignment_id, [])
        for att in attachments:
            bucket.append({
                "id": str(uuid4()),
                "file_path": att["file_path"],
                "file_name": att["file_name"],
                "mime": att.get("mime"),
            })

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        a = self.t.assignments.get(assignment_id)
        return self._assignment_dict(a) if a else None

    def list_assignments(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        rows = list(self.t.assignments.values())
        if teacher_id is not None:
            owned = {c.id for c in self.t.courses.values() if c.teacher_id == teacher_id}
            rows = [a for a in rows if a.course_id in owned]
        if student_id is not None:
            rows = [a for a in rows if student_id in self.t.assignment_students.get(a.id, [])]
        if course_id is not None:
            rows = [a for a in rows if a.course_id == course_id]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return [self._assignment_dict(a) for a in rows]

    def delete_assignment(self, assignment_id: str) -> bool:
        if self.t.assignments.pop(assignment_id, None) is None:
            return False
        self.t.assignment_students.pop(assignment_id, None)
        self.t.assignment_attachments.pop(assignment_id, None)
        for sid in [s.id for s in self.t.assignment_submissions.values() if s.assignment_id == assignment_id]:
            self.t.assignment_submissions.pop(sid, None)
            self.t.submission_attachments.pop(sid, None)
        return True

    def is_assignment_student(self, assignment_id: str, student_id: str) -> bool:
        return student_id in self.t.assignment_students.get(assignment_id, [])

    def upsert_assignment_submission(self, assignment_id: str, student_id: str, *, content: Any) -> dict:
        for sub in self.t.assignment_submissions.values():
            if sub.assignment_id == assignment_id and sub.student_id == student_id:
                sub.content = content
                sub.status = "submitted"
                sub.submitted_at = _now_iso()
                return self._submission_dict(sub)
        row = AssignmentSubmissionRow(
            id=str(uuid4()),
            assignment_id=assignment_id,
            student_id=student_id,
            content=content,
            status="submitted",
            grade=None,
            submitted_at=_now_iso(),
        )
        self.t.assignment_submissions[row.id] = row
        return self._submission_dict(row)

    def replace_submission_attachments(self, submission_id: str, attachments: Iterable[dict]) -> None:
        self.t.submission_attachments[submission_id] = [
            {"id": str(uuid4()), "file_path": a["file_path"], "file_name": a["file_name"], "mime": a.get("mime")}
            for a in attachments
        ]

    def get_assignment_submission(self, submission_id: str) -> Optional[dict]:
        sub = self.t.assignment_submissions.get(submission_id)
        return self._submission_dict(sub) if sub else None

    def grade_assignment_submission(self, submission_id: str, grade: float) -> Optional[dict]:
        sub = self.t.assignment_submissions.get(submission_id)
        if not sub:
            return None
        sub.grade = grade
        sub.status = "graded"
        return self._submission_dict(sub)

    # --- Teaching: quizzes -------------------------------------------------------

    def _quiz_dict(self, q: QuizRow) -> dict:
        data = asdict(q)
        c = self.t.courses.get(q.course_id)
        data["course"] = {"id": c.id, "title": c.title} if c else None
        data["students"] = self._students_brief(self.t.quiz_students.get(q.id, []))
        data["questions"] = self.list_quiz_questions(q.id)
        subs = [s for s in self.t.quiz_submissions.values() if s.quiz_id == q.id]
        subs.sort(key=lambda s: s.submitted_at)
        data["submissions"] = [asdict(s) for s in subs]
        return data

    def create_quiz(
        self,
        *,
        course_id: str,
        title: str,
        description=None,
        due_at=None,
        total_marks: int = 100,
        attachment_required: bool = False,
        created_by=None,
    ) -> dict:
        if course_id not in self.t.courses:
            raise LookupError("course_not_found")
        row = QuizRow(
            id=str(uuid4()),
            course_id=course_id,
            title=title,
            description=description,
            due_at=_iso(due_at),
            total_marks=int(total_marks),
            attachment_required=bool(attachment_required),
            created_by=created_by,
            created_at=_now_iso(),
        )
        self.t.quizzes[row.id] = row
        self.t.quiz_students[row.id] = []
        return self._quiz_dict(row)

    def add_quiz_questions(self, quiz_id: str, questions: Iterable[dict]) -> None:
        if quiz_id not in self.t.quizzes:
            raise LookupError("quiz_not_found")
        for q in questions:
            row = QuizQuestionRow(
                id=str(uuid4()),
                quiz_id=quiz_id,
                question_text=q["question_text"],
                question_type=q.get("question_type") or "multiple_choice",
                options=list(q.get("options") or []),
                correct_answer=q.get("correct_answer"),
                points=float(q.get("points", 1)),
                sort_order=int(q.get("sort_order", 0)),
            )
            self.t.quiz_questions[row.id] = row

    def list_quiz_questions(self, quiz_id: str) -> List[dict]:
        rows = [q for q in self.t.quiz_questions.values() if q.quiz_id == quiz_id]
        rows.sort(key=lambda q: q.sort_order)
        return [asdict(q) for q in rows]

    def add_quiz_students(self, quiz_id: str, student_ids: Iterable[str]) -> None:
        if quiz_id not in self.t.quizzes:
            raise LookupError("quiz_not_found")
        ids = list(student_ids)
        if any(sid not in self.t.students for sid in ids):
            raise LookupError("student_not_found")
        current = self.t.quiz_students.setdefault(quiz_id, [])
        current.extend(sid for sid in ids if sid not in current)

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        q = self.t.quizzes.get(quiz_id)
        return self._quiz_dict(q) if q else None

    def list_quizzes(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        rows = list(self.t.quizzes.values())
        if teacher_id is not None:
            owned = {c.id for c in self.t.courses.values() if c.teacher_id == teacher_id}
            rows = [q for q in rows if q.course_id in owned]
        if student_id is not None:
            rows = [q for q in rows if student_id in self.t.quiz_students.get(q.id, [])]
        if course_id is not None:
            rows = [q for q in rows if q.course_id == course_id]
        rows.sort(key=lambda q: q.created_at, reverse=True)
        return [self._quiz_dict(q) for q in rows]

    def delete_quiz(self, quiz_id: str) -> bool:
        if self.t.quizzes.pop(quiz_id, None) is None:
            return False
        self.t.quiz_students.pop(quiz_id, None)
        for qid in [q.id for q in self.t.quiz_questions.values() if q.quiz_id == quiz_id]:
            self.t.quiz_questions.pop(qid, None)
        for sid in [s.id for s in self.t.quiz_submissions.values() if s.quiz_id == quiz_id]:
            self.t.quiz_submissions.pop(sid, None)
        return True

    def is_quiz_student(self, quiz_id: str, student_id: str) -> bool:
        return student_id in self.t.quiz_students.get(quiz_id, [])

    def upsert_quiz_submission(self, quiz_id: str, student_id: str, *, answers: Dict[str, Any], score: float) -> dict:
        for sub in self.t.quiz_submissions.values():
            if sub.quiz_id == quiz_id and sub.student_id == student_id:
                sub.answers = dict(answers)
                sub.score = score
                sub.submitted_at = _now_iso()
                return asdict(sub)
        row = QuizSubmissionRow(
            id=str(uuid4()),
            quiz_id=quiz_id,
            student_id=student_id,
            answers=dict(answers),
            score=score,
            submitted_at=_now_iso(),
        )
        self.t.quiz_submissions[row.id] = row
        return asdict(row)

    def get_quiz_submission(self, submission_id: str) -> Optional[dict]:
        sub = self.t.quiz_submissions.get(submission_id)
        return asdict(sub) if sub else None

    def set_quiz_submission_score(self, submission_id: str, score: float) -> Optional[dict]:
        sub = self.t.quiz_submissions.get(submission_id)
        if not sub:
            return None
        sub.score = score
        return asdict(sub)

    # --- Chat --------------------------------------------------------------------

    def _user_brief(self, user_id: str) -> Optional[dict]:
        u = self.t.users.get(user_id)
        if not u:
            return None
        return {"id": u.id, "name": u.name, "role": u.role, "email": u.email}

    def _conversation_dict(self, c: ConversationRow) -> dict:
        data = asdict(c)
        data["participants"] = [
            b for b in (self._user_brief(uid) for uid in self.t.participants.get(c.id, {})) if b
        ]
        course = self.t.courses.get(c.course_id) if c.course_id else None
        data["course"] = {"id": course.id, "title": course.title} if course else None
        return data

    def _delete_conversation(self, conversation_id: str) -> None:
        self.t.conversations.pop(conversation_id, None)
        self.t.participants.pop(conversation_id, None)
        for mid in [m.id for m in self.t.messages.values() if m.conversation_id == conversation_id]:
            self.t.messages.pop(mid, None)

    def list_direct_conversations(self, user_id: str) -> List[dict]:
        return [
            self._conversation_dict(c)
            for c in self.t.conversations.values()
            if c.type == "direct" and user_id in self.t.participants.get(c.id, {})
        ]

    def list_group_conversations(self, course_ids: Iterable[str]) -> List[dict]:
        wanted: Set[str] = set(course_ids)
        return [
            self._conversation_dict(c)
            for c in self.t.conversations.values()
            if c.type == "group" and c.course_id in wanted
        ]

    def get_conversation(self, conversation_id: str) -> Optional[dict]:
        c = self.t.conversations.get(conversation_id)
        return self._conversation_dict(c) if c else None

    def get_course_conversation(self, course_id: str) -> Optional[dict]:
        for c in self.t.conversations.values():
            if c.type == "group" and c.course_id == course_id:
                return self._conversation_dict(c)
        return None

    def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[str]:
        for c in self.t.conversations.values():
            if c.type != "direct":
                continue
            members = set(self.t.participants.get(c.id, {}))
            if members == {user_a, user_b}:
                return c.id
        return None

    def create_conversation(self, *, type: str, course_id: str | None = None, participant_ids: Iterable[str] = ()) -> dict:
        now = _now_iso()
        row = ConversationRow(id=str(uuid4()), type=type, course_id=course_id, created_at=now, updated_at=now)
        self.t.conversations[row.id] = row
        self.t.participants[row.id] = {uid: None for uid in participant_ids}
        return self._conversation_dict(row)

    def touch_conversation(self, conversation_id: str) -> None:
        c = self.t.conversations.get(conversation_id)
        if c:
            c.updated_at = _now_iso()

    def _message_dict(self, m: MessageRow) -> dict:
        data = asdict(m)
        data["sender"] = self._user_brief(m.sender_id)
        return data

    def list_messages(self, conversation_id: str) -> List[dict]:
        rows = [m for m in self.t.messages.values() if m.conversation_id == conversation_id]
        rows.sort(key=lambda m: _parse(m.created_at))
        return [self._message_dict(m) for m in rows]

    def last_message(self, conversation_id: str) -> Optional[dict]:
        rows = self.list_messages(conversation_id)
        return rows[-1] if rows else None

    def create_message(self, conversation_id: str, *, sender_id: str, content: str) -> dict:
        if conversation_id not in self.t.conversations:
            raise LookupError("conversation_not_found")
        row = MessageRow(id=str(uuid4()), conversation_id=conversation_id, sender_id=sender_id, content=content, created_at=_now_iso())
        self.t.messages[row.id] = row
        return self._message_dict(row)

    def get_last_read(self, conversation_id: str, user_id: str) -> Optional[str]:
        return self.t.participants.get(conversation_id, {}).get(user_id)

    def count_messages_after(self, conversation_id: str, after: Optional[str]) -> int:
        threshold = _parse(after)
        return sum(
            1
            for m in self.t.messages.values()
            if m.conversation_id == conversation_id and _parse(m.created_at) > threshold
        )

    def mark_read(self, conversation_id: str, user_id: str) -> str:
        stamp = _now_iso()
        self.t.participants.setdefault(conversation_id, {})[user_id] = stamp
        return stamp


__all__ = ["InMemoryRepo"]

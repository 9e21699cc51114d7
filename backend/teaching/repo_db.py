"""
Postgres-backed repository for Teaching (courses, live sessions, coursework).

Security:
- Access control is decided in the service layer (role + ownership); this repo
  trusts its callers and must only be used server-side with a service DSN.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection and commits
  on its own. Multi-step workflows (course curriculum, session provisioning)
  are therefore NOT atomic across calls; callers compensate explicitly.
- Returns plain dicts (via `dict_row`) shaped like the in-memory repository.
- Nested lists (students, attachments, submissions) are aggregated with
  `json_agg` so one query returns a complete resource.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
import os

try:
    import psycopg
    from psycopg.rows import dict_row
    from psycopg.types.json import Jsonb
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    dict_row = None  # type: ignore
    Jsonb = None  # type: ignore
    HAVE_PSYCOPG = False


_UNSET = object()


def _dsn() -> str:
    """Resolve the DSN for DB access from the environment."""
    candidates = [
        os.getenv("CAMPUS_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
        os.getenv("SUPABASE_DB_URL"),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBTeachingRepo")


def _ts(col: str) -> str:
    return f"""to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""


def _day(col: str) -> str:
    return f"to_char({col}, 'YYYY-MM-DD')"


def _students_json(link_table: str, link_col: str, owner_expr: str) -> str:
    """Subquery aggregating `{id, user_id, name, email}` for linked students."""
    return f"""
        coalesce((
            select json_agg(json_build_object(
                       'id', s.id::text, 'user_id', s.user_id::text, 'name', su.name, 'email', su.email
                   ) order by su.name nulls last, su.email)
            from public.{link_table} lt
            join public.students s on s.id = lt.student_id
            join public.users su on su.id = s.user_id
            where lt.{link_col} = {owner_expr}
        ), '[]'::json)
    """


def _course_json(course_col: str) -> str:
    return f"(select json_build_object('id', cc.id::text, 'title', cc.title) from public.courses cc where cc.id = {course_col})"


_COURSE_SELECT = f"""
    select c.id::text as id,
           c.title,
           c.description,
           c.teacher_id::text as teacher_id,
           c.category,
           c.level,
           c.what_students_will_learn,
           c.cover_image,
           {_day('c.tenure_start')} as tenure_start,
           {_day('c.tenure_end')} as tenure_end,
           {_ts('c.created_at')} as created_at,
           {_ts('c.updated_at')} as updated_at,
           case when t.id is null then null else json_build_object(
               'id', t.id::text, 'user_id', t.user_id::text, 'name', tu.name, 'email', tu.email
           ) end as teacher,
           (select count(*) from public.course_students cs where cs.course_id = c.id)::int as student_count
    from public.courses c
    left join public.teachers t on t.id = c.teacher_id
    left join public.users tu on tu.id = t.user_id
"""

_SESSION_SELECT = f"""
    select cs.id::text as id,
           cs.course_id::text as course_id,
           cs.teacher_id::text as teacher_id,
           cs.title,
           {_ts('cs.scheduled_at')} as scheduled_at,
           cs.duration_minutes,
           cs.status,
           cs.daily_room_name as room_name,
           cs.daily_room_url as room_url,
           {_ts('cs.created_at')} as created_at,
           {_course_json('cs.course_id')} as course,
           {_students_json('session_students', 'session_id', 'cs.id')} as students
    from public.course_sessions cs
"""

_ATTACHMENTS_JSON = """
    coalesce((
        select json_agg(json_build_object('id', x.id::text, 'file_path', x.file_path, 'file_name', x.file_name, 'mime', x.mime))
        from public.{table} x where x.{col} = {owner}
    ), '[]'::json)
"""

_SUBMISSIONS_JSON = f"""
    coalesce((
        select json_agg(json_build_object(
                   'id', sb.id::text,
                   'assignment_id', sb.assignment_id::text,
                   'student_id', sb.student_id::text,
                   'content', sb.content,
                   'status', sb.status,
                   'grade', sb.grade,
                   'submitted_at', {_ts('sb.submitted_at')},
                   'attachments', {_ATTACHMENTS_JSON.format(table='submission_attachments', col='submission_id', owner='sb.id')}
               ) order by sb.submitted_at)
        from public.assignment_submissions sb where sb.assignment_id = a.id
    ), '[]'::json)
"""

_ASSIGNMENT_SELECT = f"""
    select a.id::text as id,
           a.course_id::text as course_id,
           a.title,
           a.description,
           {_ts('a.due_at')} as due_at,
           a.total_marks,
           a.min_pass_marks,
           a.created_by::text as created_by,
           {_ts('a.created_at')} as created_at,
           {_course_json('a.course_id')} as course,
           {_students_json('assignment_students', 'assignment_id', 'a.id')} as students,
           {_ATTACHMENTS_JSON.format(table='assignment_attachments', col='assignment_id', owner='a.id')} as attachments,
           {_SUBMISSIONS_JSON} as submissions
    from public.assignments a
"""

_QUESTION_COLUMNS = """
    id::text as id, quiz_id::text as quiz_id, question_text, question_type, options,
    correct_answer, points::float as points, sort_order
"""

_QUIZ_SELECT = f"""
    select q.id::text as id,
           q.course_id::text as course_id,
           q.title,
           q.description,
           {_ts('q.due_at')} as due_at,
           q.total_marks,
           q.attachment_required,
           q.created_by::text as created_by,
           {_ts('q.created_at')} as created_at,
           {_course_json('q.course_id')} as course,
           {_students_json('quiz_students', 'quiz_id', 'q.id')} as students,
           coalesce((
               select json_agg(json_build_object(
                          'id', qq.id::text, 'quiz_id', qq.quiz_id::text, 'question_text', qq.question_text,
                          'question_type', qq.question_type, 'options', qq.options,
                          'correct_answer', qq.correct_answer, 'points', qq.points, 'sort_order', qq.sort_order
                      ) order by qq.sort_order)
               from public.quiz_questions qq where qq.quiz_id = q.id
           ), '[]'::json) as questions,
           coalesce((
               select json_agg(json_build_object(
                          'id', qs.id::text, 'quiz_id', qs.quiz_id::text, 'student_id', qs.student_id::text,
                          'answers', qs.answers, 'score', qs.score, 'submitted_at', {_ts('qs.submitted_at')}
                      ) order by qs.submitted_at)
               from public.quiz_submissions qs where qs.quiz_id = q.id
           ), '[]'::json) as submissions
    from public.quizzes q
"""

_SUBMISSION_COLUMNS = f"""
    sb.id::text as id, sb.assignment_id::text as assignment_id, sb.student_id::text as student_id,
    sb.content, sb.status, sb.grade::float as grade, {_ts('sb.submitted_at')} as submitted_at,
    {_ATTACHMENTS_JSON.format(table='submission_attachments', col='submission_id', owner='sb.id')} as attachments
"""

_QUIZ_SUBMISSION_COLUMNS = f"""
    id::text as id, quiz_id::text as quiz_id, student_id::text as student_id, answers,
    score::float as score, {_ts('submitted_at')} as submitted_at
"""

_COURSE_FIELDS = (
    "title",
    "description",
    "teacher_id",
    "category",
    "level",
    "what_students_will_learn",
    "cover_image",
    "tenure_start",
    "tenure_end",
)


def _scope_clause(alias: str, *, teacher_id, student_id, course_id, link_table: str, link_col: str) -> tuple[str, list]:
    """Build the where clause shared by the role-scoped coursework listings."""
    clauses: list[str] = []
    params: list[Any] = []
    if teacher_id is not None:
        clauses.append(f"exists (select 1 from public.courses oc where oc.id = {alias}.course_id and oc.teacher_id = %s)")
        params.append(teacher_id)
    if student_id is not None:
        clauses.append(f"exists (select 1 from public.{link_table} l where l.{link_col} = {alias}.id and l.student_id = %s)")
        params.append(student_id)
    if course_id is not None:
        clauses.append(f"{alias}.course_id = %s")
        params.append(course_id)
    where = (" where " + " and ".join(clauses)) if clauses else ""
    return where, params


class DBTeachingRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Create a repo bound to a DSN.

        Does not open a connection eagerly; connections are per-call.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBTeachingRepo")
        self._dsn = dsn or _dsn()

    def _connect(self):
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _fetch_one(self, sql: str, params: Iterable[Any] = ()) -> Optional[dict]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
                conn.commit()
        return dict(row) if row else None

    def _fetch_all(self, sql: str, params: Iterable[Any] = ()) -> List[dict]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
        return [dict(r) for r in rows]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                count = cur.rowcount
                conn.commit()
        return count

    def _link_students(self, table: str, col: str, owner_id: str, student_ids: Iterable[str]) -> None:
        ids = list(student_ids)
        if not ids:
            return
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    f"insert into public.{table} ({col}, student_id) values (%s, %s) on conflict do nothing",
                    [(owner_id, sid) for sid in ids],
                )
                conn.commit()

    # --- Courses ----------------------------------------------------------------

    def create_course(self, *, title: str, teacher_id: str | None, **fields: Any) -> dict:
        values = {"title": title, "teacher_id": teacher_id}
        values.update({k: v for k, v in fields.items() if k in _COURSE_FIELDS})
        cols = list(values.keys())
        row = self._fetch_one(
            f"insert into public.courses ({', '.join(cols)}) values ({', '.join(['%s'] * len(cols))}) returning id::text",
            [values[c] for c in cols],
        )
        return self.get_course(row["id"]) or {}

    def get_course(self, course_id: str) -> Optional[dict]:
        return self._fetch_one(_COURSE_SELECT + " where c.id = %s", (course_id,))

    def list_courses(self, *, teacher_id: str | None = None, student_id: str | None = None) -> List[dict]:
        clauses: list[str] = []
        params: list[Any] = []
        if teacher_id is not None:
            clauses.append("c.teacher_id = %s")
            params.append(teacher_id)
        if student_id is not None:
            clauses.append("exists (select 1 from public.course_students e where e.course_id = c.id and e.student_id = %s)")
            params.append(student_id)
        where = (" where " + " and ".join(clauses)) if clauses else ""
        return self._fetch_all(_COURSE_SELECT + where + " order by c.created_at desc, c.id", params)

    def count_courses(self) -> int:
        row = self._fetch_one("select count(*)::int as n from public.courses")
        return int(row["n"]) if row else 0

    def update_course(self, course_id: str, **fields: Any) -> Optional[dict]:
        updates = {k: v for k, v in fields.items() if k in _COURSE_FIELDS}
        if updates:
            sets = ", ".join(f"{k} = %s" for k in updates)
            count = self._execute(
                f"update public.courses set {sets}, updated_at = now() where id = %s",
                [*updates.values(), course_id],
            )
            if count == 0:
                return None
        return self.get_course(course_id)

    def delete_course(self, course_id: str) -> bool:
        return self._execute("delete from public.courses where id = %s", (course_id,)) > 0

    def add_course_students(self, course_id: str, student_ids: Iterable[str]) -> None:
        self._link_students("course_students", "course_id", course_id, student_ids)

    def remove_course_student(self, course_id: str, student_id: str) -> bool:
        return self._execute(
            "delete from public.course_students where course_id = %s and student_id = %s",
            (course_id, student_id),
        ) > 0

    def list_course_students(self, course_id: str) -> List[dict]:
        return self._fetch_all(
            """
            select s.id::text as id, s.user_id::text as user_id, u.name, u.email
            from public.course_students cs
            join public.students s on s.id = cs.student_id
            join public.users u on u.id = s.user_id
            where cs.course_id = %s
            order by u.name nulls last, u.email
            """,
            (course_id,),
        )

    def is_student_enrolled(self, course_id: str, student_id: str) -> bool:
        row = self._fetch_one(
            "select 1 as ok from public.course_students where course_id = %s and student_id = %s",
            (course_id, student_id),
        )
        return bool(row)

    # --- Course files -----------------------------------------------------------

    _FILE_COLUMNS = f"id::text as id, course_id::text as course_id, file_name, file_path, mime, {_ts('created_at')} as created_at"

    def list_course_files(self, course_id: str) -> List[dict]:
        return self._fetch_all(
            f"select {self._FILE_COLUMNS} from public.course_files where course_id = %s order by created_at desc",
            (course_id,),
        )

    def create_course_file(self, course_id: str, *, file_name: str, file_path: str, mime: str | None) -> dict:
        return self._fetch_one(
            f"insert into public.course_files (course_id, file_name, file_path, mime) values (%s, %s, %s, %s) returning {self._FILE_COLUMNS}",
            (course_id, file_name, file_path, mime),
        ) or {}

    def get_course_file(self, course_id: str, file_id: str) -> Optional[dict]:
        return self._fetch_one(
            f"select {self._FILE_COLUMNS} from public.course_files where id = %s and course_id = %s",
            (file_id, course_id),
        )

    def delete_course_file(self, course_id: str, file_id: str) -> bool:
        return self._execute(
            "delete from public.course_files where id = %s and course_id = %s",
            (file_id, course_id),
        ) > 0

    # --- Live sessions ----------------------------------------------------------

    def create_session(
        self,
        *,
        course_id: str,
        teacher_id: str | None,
        title: str,
        scheduled_at,
        duration_minutes: int,
        status: str = "upcoming",
        room_name: str | None = None,
        room_url: str | None = None,
    ) -> dict:
        row = self._fetch_one(
            """
            insert into public.course_sessions
                (course_id, teacher_id, title, scheduled_at, duration_minutes, status, daily_room_name, daily_room_url)
            values (%s, %s, %s, %s, %s, %s, %s, %s)
            returning id::text
            """,
            (course_id, teacher_id, title, scheduled_at, int(duration_minutes), status, room_name, room_url),
        )
        return self.get_session(row["id"]) or {}

    def add_session_students(self, session_id: str, student_ids: Iterable[str]) -> None:
        self._link_students("session_students", "session_id", session_id, student_ids)

    def get_session(self, session_id: str) -> Optional[dict]:
        return self._fetch_one(_SESSION_SELECT + " where cs.id = %s", (session_id,))

    def list_sessions(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        clauses: list[str] = []
        params: list[Any] = []
        if teacher_id is not None:
            clauses.append("cs.teacher_id = %s")
            params.append(teacher_id)
        if student_id is not None:
            clauses.append("exists (select 1 from public.session_students l where l.session_id = cs.id and l.student_id = %s)")
            params.append(student_id)
        if course_id is not None:
            clauses.append("cs.course_id = %s")
            params.append(course_id)
        where = (" where " + " and ".join(clauses)) if clauses else ""
        return self._fetch_all(_SESSION_SELECT + where + " order by cs.scheduled_at asc, cs.id", params)

    def update_session(self, session_id: str, *, title=_UNSET, scheduled_at=_UNSET, duration_minutes=_UNSET) -> Optional[dict]:
        updates: Dict[str, Any] = {}
        if title is not _UNSET:
            updates["title"] = title
        if scheduled_at is not _UNSET:
            updates["scheduled_at"] = scheduled_at
        if duration_minutes is not _UNSET:
            updates["duration_minutes"] = int(duration_minutes)
        if updates:
            sets = ", ".join(f"{k} = %s" for k in updates)
            if self._execute(f"update public.course_sessions set {sets} where id = %s", [*updates.values(), session_id]) == 0:
                return None
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self._execute("delete from public.course_sessions where id = %s", (session_id,)) > 0

    def is_session_student(self, session_id: str, student_id: str) -> bool:
        row = self._fetch_one(
            "select 1 as ok from public.session_students where session_id = %s and student_id = %s",
            (session_id, student_id),
        )
        return bool(row)

    # --- Assignments ------------------------------------------------------------

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
        row = self._fetch_one(
            """
            insert into public.assignments (course_id, title, description, due_at, total_marks, min_pass_marks, created_by)
            values (%s, %s, %s, %s, %s, %s, %s)
            returning id::text
            """,
            (course_id, title, description, due_at, int(total_marks), min_pass_marks, created_by),
        )
        return self.get_assignment(row["id"]) or {}

    def add_assignment_students(self, assignment_id: str, student_ids: Iterable[str]) -> None:
        self._link_students("assignment_students", "assignment_id", assignment_id, student_ids)

    def add_assignment_attachments(self, assignment_id: str, attachments: Iterable[dict]) -> None:
        rows = [(assignment_id, a["file_path"], a["file_name"], a.get("mime")) for a in attachments]
        if not rows:
            return
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    "insert into public.assignment_attachments (assignment_id, file_path, file_name, mime) values (%s, %s, %s, %s)",
                    rows,
                )
                conn.commit()

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        return self._fetch_one(_ASSIGNMENT_SELECT + " where a.id = %s", (assignment_id,))

    def list_assignments(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        where, params = _scope_clause(
            "a",
            teacher_id=teacher_id,
            student_id=student_id,
            course_id=course_id,
            link_table="assignment_students",
            link_col="assignment_id",
        )
        return self._fetch_all(_ASSIGNMENT_SELECT + where + " order by a.created_at desc, a.id", params)

    def delete_assignment(self, assignment_id: str) -> bool:
        return self._execute("delete from public.assignments where id = %s", (assignment_id,)) > 0

    def is_assignment_student(self, assignment_id: str, student_id: str) -> bool:
        row = self._fetch_one(
            "select 1 as ok from public.assignment_students where assignment_id = %s and student_id = %s",
            (assignment_id, student_id),
        )
        return bool(row)

    def upsert_assignment_submission(self, assignment_id: str, student_id: str, *, content: Any) -> dict:
        row = self._fetch_one(
            """
            insert into public.assignment_submissions (assignment_id, student_id, content, status, submitted_at)
            values (%s, %s, %s, 'submitted', now())
            on conflict (assignment_id, student_id)
            do update set content = excluded.content, status = 'submitted', submitted_at = now()
            returning id::text
            """,
            (assignment_id, student_id, Jsonb(content)),
        )
        return self.get_assignment_submission(row["id"]) or {}

    def replace_submission_attachments(self, submission_id: str, attachments: Iterable[dict]) -> None:
        rows = [(submission_id, a["file_path"], a["file_name"], a.get("mime")) for a in attachments]
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.submission_attachments where submission_id = %s", (submission_id,))
                if rows:
                    cur.executemany(
                        "insert into public.submission_attachments (submission_id, file_path, file_name, mime) values (%s, %s, %s, %s)",
                        rows,
                    )
                conn.commit()

    def get_assignment_submission(self, submission_id: str) -> Optional[dict]:
        return self._fetch_one(
            f"select {_SUBMISSION_COLUMNS} from public.assignment_submissions sb where sb.id = %s",
            (submission_id,),
        )

    def grade_assignment_submission(self, submission_id: str, grade: float) -> Optional[dict]:
        if self._execute(
            "update public.assignment_submissions set grade = %s, status = 'graded' where id = %s",
            (grade, submission_id),
        ) == 0:
            return None
        return self.get_assignment_submission(submission_id)

    # --- Quizzes ----------------------------------------------------------------

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
        row = self._fetch_one(
            """
            insert into public.quizzes (course_id, title, description, due_at, total_marks, attachment_required, created_by)
            values (%s, %s, %s, %s, %s, %s, %s)
            returning id::text
            """,
            (course_id, title, description, due_at, int(total_marks), bool(attachment_required), created_by),
        )
        return self.get_quiz(row["id"]) or {}

    def add_quiz_questions(self, quiz_id: str, questions: Iterable[dict]) -> None:
        rows = [
            (
                quiz_id,
                q["question_text"],
                q.get("question_type") or "multiple_choice",
                Jsonb(list(q.get("options") or [])),
                q.get("correct_answer"),
                q.get("points", 1),
                int(q.get("sort_order", 0)),
            )
            for q in questions
        ]
        if not rows:
            return
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    insert into public.quiz_questions
                        (quiz_id, question_text, question_type, options, correct_answer, points, sort_order)
                    values (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    rows,
                )
                conn.commit()

    def list_quiz_questions(self, quiz_id: str) -> List[dict]:
        return self._fetch_all(
            f"select {_QUESTION_COLUMNS} from public.quiz_questions where quiz_id = %s order by sort_order, id",
            (quiz_id,),
        )

    def add_quiz_students(self, quiz_id: str, student_ids: Iterable[str]) -> None:
        self._link_students("quiz_students", "quiz_id", quiz_id, student_ids)

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        return self._fetch_one(_QUIZ_SELECT + " where q.id = %s", (quiz_id,))

    def list_quizzes(
        self,
        *,
        teacher_id: str | None = None,
        student_id: str | None = None,
        course_id: str | None = None,
    ) -> List[dict]:
        where, params = _scope_clause(
            "q",
            teacher_id=teacher_id,
            student_id=student_id,
            course_id=course_id,
            link_table="quiz_students",
            link_col="quiz_id",
        )
        return self._fetch_all(_QUIZ_SELECT + where + " order by q.created_at desc, q.id", params)

    def delete_quiz(self, quiz_id: str) -> bool:
        return self._execute("delete from public.quizzes where id = %s", (quiz_id,)) > 0

    def is_quiz_student(self, quiz_id: str, student_id: str) -> bool:
        row = self._fetch_one(
            "select 1 as ok from public.quiz_students where quiz_id = %s and student_id = %s",
            (quiz_id, student_id),
        )
        return bool(row)

    def upsert_quiz_submission(self, quiz_id: str, student_id: str, *, answers: Dict[str, Any], score: float) -> dict:
        return self._fetch_one(
            f"""
            insert into public.quiz_submissions (quiz_id, student_id, answers, score, submitted_at)
            values (%s, %s, %s, %s, now())
            on conflict (quiz_id, student_id)
            do update set answers = excluded.answers, score = excluded.score, submitted_at = now()
            returning {_QUIZ_SUBMISSION_COLUMNS}
            """,
            (quiz_id, student_id, Jsonb(dict(answers)), score),
        ) or {}

    def get_quiz_submission(self, submission_id: str) -> Optional[dict]:
        return self._fetch_one(
            f"select {_QUIZ_SUBMISSION_COLUMNS} from public.quiz_submissions where id = %s",
            (submission_id,),
        )

    def set_quiz_submission_score(self, submission_id: str, score: float) -> Optional[dict]:
        return self._fetch_one(
            f"update public.quiz_submissions set score = %s where id = %s returning {_QUIZ_SUBMISSION_COLUMNS}",
            (score, submission_id),
        )


__all__ = ["DBTeachingRepo"]

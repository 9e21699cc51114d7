"""
Postgres-backed repository for accounts (users, credentials, role profiles).

Design:
- psycopg3 with a short-lived connection per call, rows as dicts.
- A user and its role profile live in separate tables (`users` vs.
  `teachers`/`students`); profile ids are distinct from user ids.
- Unique email conflicts surface as `ValueError("email_taken")` so the
  service layer does not need to know about psycopg errors.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Optional
import os

try:
    import psycopg
    from psycopg import errors as pg_errors
    from psycopg.rows import dict_row
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    pg_errors = None  # type: ignore
    dict_row = None  # type: ignore
    HAVE_PSYCOPG = False


_UNSET = object()

_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""

_USER_COLUMNS = f"""
    id::text as id, email, name, phone, role,
    {_TS.format(col='created_at')} as created_at,
    {_TS.format(col='updated_at')} as updated_at
"""

_TEACHER_SELECT = f"""
    select t.id::text as id, t.user_id::text as user_id, u.name, u.email,
           coalesce(t.phone, u.phone) as phone,
           to_char(t.join_date, 'YYYY-MM-DD') as join_date,
           t.qualification, t.image_url,
           {_TS.format(col='t.created_at')} as created_at
    from public.teachers t
    join public.users u on u.id = t.user_id
"""

_STUDENT_SELECT = f"""
    select s.id::text as id, s.user_id::text as user_id, u.name, u.email,
           coalesce(s.phone, u.phone) as phone,
           s.student_number, s.fee_status, s.gender,
           to_char(s.join_date, 'YYYY-MM-DD') as join_date,
           s.image_url,
           {_TS.format(col='s.created_at')} as created_at
    from public.students s
    join public.users u on u.id = s.user_id
"""

_TEACHER_FIELDS = ("phone", "join_date", "qualification", "image_url")
_STUDENT_FIELDS = ("student_number", "fee_status", "gender", "join_date", "phone", "image_url")


def _dsn() -> str:
    for dsn in (os.getenv("CAMPUS_DATABASE_URL"), os.getenv("DATABASE_URL"), os.getenv("SUPABASE_DB_URL")):
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBAccountsRepo")


class DBAccountsRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBAccountsRepo")
        self._dsn = dsn or _dsn()

    def _fetch_one(self, sql: str, params: Iterable[Any] = ()) -> Optional[dict]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(sql, tuple(params))
                except pg_errors.UniqueViolation as exc:
                    raise ValueError("email_taken") from exc
                except pg_errors.ForeignKeyViolation as exc:
                    raise LookupError("user_not_found") from exc
                row = cur.fetchone() if cur.description else None
                conn.commit()
        return dict(row) if row else None

    def _fetch_all(self, sql: str, params: Iterable[Any] = ()) -> List[dict]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
        return [dict(r) for r in rows]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                count = cur.rowcount
                conn.commit()
        return count

    # --- Users -------------------------------------------------------------------

    def count_users(self, role: str | None = None) -> int:
        if role is None:
            row = self._fetch_one("select count(*)::int as n from public.users")
        else:
            row = self._fetch_one("select count(*)::int as n from public.users where role = %s", (role,))
        return int(row["n"]) if row else 0

    def list_users(self, role: str | None = None) -> List[dict]:
        where = " where role = %s" if role is not None else ""
        params = (role,) if role is not None else ()
        return self._fetch_all(
            f"select {_USER_COLUMNS} from public.users{where} order by lower(coalesce(name, '')), email",
            params,
        )

    def get_user(self, user_id: str) -> Optional[dict]:
        return self._fetch_one(f"select {_USER_COLUMNS} from public.users where id = %s", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[dict]:
        return self._fetch_one(
            f"select {_USER_COLUMNS} from public.users where email = %s",
            ((email or "").strip().lower(),),
        )

    def create_user(self, *, email: str, name: str | None, phone: str | None, role: str) -> dict:
        return self._fetch_one(
            f"insert into public.users (email, name, phone, role) values (%s, %s, %s, %s) returning {_USER_COLUMNS}",
            (email.strip().lower(), name, phone, role),
        ) or {}

    def update_user(self, user_id: str, *, name=_UNSET, email=_UNSET, phone=_UNSET) -> Optional[dict]:
        updates = {}
        if name is not _UNSET:
            updates["name"] = name
        if email is not _UNSET:
            updates["email"] = str(email).strip().lower()
        if phone is not _UNSET:
            updates["phone"] = phone
        sets = "".join(f"{k} = %s, " for k in updates)
        return self._fetch_one(
            f"update public.users set {sets}updated_at = now() where id = %s returning {_USER_COLUMNS}",
            [*updates.values(), user_id],
        )

    def delete_user(self, user_id: str) -> bool:
        return self._execute("delete from public.users where id = %s", (user_id,)) > 0

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        self._fetch_one(
            """
            insert into public.password_credentials (user_id, password_hash) values (%s, %s)
            on conflict (user_id) do update set password_hash = excluded.password_hash
            """,
            (user_id, password_hash),
        )

    def get_password_hash(self, user_id: str) -> Optional[str]:
        row = self._fetch_one(
            "select password_hash from public.password_credentials where user_id = %s",
            (user_id,),
        )
        return row["password_hash"] if row else None

    def delete_credentials(self, user_id: str) -> None:
        self._execute("delete from public.password_credentials where user_id = %s", (user_id,))

    # --- Profiles ----------------------------------------------------------------

    def create_teacher_profile(self, user_id: str, *, phone=None, join_date=None, qualification=None, image_url=None) -> dict:
        row = self._fetch_one(
            """
            insert into public.teachers (user_id, phone, join_date, qualification, image_url)
            values (%s, %s, %s, %s, %s) returning id::text
            """,
            (user_id, phone, join_date, qualification, image_url),
        )
        return self.get_teacher(row["id"]) or {}

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
        row = self._fetch_one(
            """
            insert into public.students (user_id, student_number, fee_status, gender, join_date, phone, image_url)
            values (%s, %s, %s, %s, %s, %s, %s) returning id::text
            """,
            (user_id, student_number, fee_status, gender, join_date, phone, image_url),
        )
        return self.get_student(row["id"]) or {}

    def get_teacher(self, teacher_id: str) -> Optional[dict]:
        return self._fetch_one(_TEACHER_SELECT + " where t.id = %s", (teacher_id,))

    def get_student(self, student_id: str) -> Optional[dict]:
        return self._fetch_one(_STUDENT_SELECT + " where s.id = %s", (student_id,))

    def list_teachers(self) -> List[dict]:
        return self._fetch_all(_TEACHER_SELECT + " order by t.created_at desc")

    def list_students(self) -> List[dict]:
        return self._fetch_all(_STUDENT_SELECT + " order by s.created_at desc")

    def _update_profile(self, table: str, allowed: tuple, profile_id: str, fields: dict) -> bool:
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            row = self._fetch_one(f"select 1 as ok from public.{table} where id = %s", (profile_id,))
            return bool(row)
        sets = ", ".join(f"{k} = %s" for k in updates)
        return self._execute(f"update public.{table} set {sets} where id = %s", [*updates.values(), profile_id]) > 0

    def update_teacher_profile(self, teacher_id: str, **fields: Any) -> Optional[dict]:
        if not self._update_profile("teachers", _TEACHER_FIELDS, teacher_id, fields):
            return None
        return self.get_teacher(teacher_id)

    def update_student_profile(self, student_id: str, **fields: Any) -> Optional[dict]:
        if not self._update_profile("students", _STUDENT_FIELDS, student_id, fields):
            return None
        return self.get_student(student_id)

    def delete_teacher_profile(self, teacher_id: str) -> bool:
        return self._execute("delete from public.teachers where id = %s", (teacher_id,)) > 0

    def delete_student_profile(self, student_id: str) -> bool:
        return self._execute("delete from public.students where id = %s", (student_id,)) > 0

    def teacher_id_for_user(self, user_id: str) -> Optional[str]:
        row = self._fetch_one("select id::text as id from public.teachers where user_id = %s", (user_id,))
        return row["id"] if row else None

    def student_id_for_user(self, user_id: str) -> Optional[str]:
        row = self._fetch_one("select id::text as id from public.students where user_id = %s", (user_id,))
        return row["id"] if row else None


__all__ = ["DBAccountsRepo"]

"""
Persistent sessions in `public.sessions` (enabled with `SESSIONS_BACKEND=db`).

Only the opaque `session_token` travels in the cookie. Each lookup joins
`public.users`, so name, email and role always reflect the current account
and a role change made by an admin applies on the next request.

The `sessions` table is reachable with the service connection only.
"""
from __future__ import annotations

from typing import Optional, Sequence
import os
import re
import secrets
import time

try:
    import psycopg
    from psycopg import sql as _sql
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover
    psycopg = None  # type: ignore
    _sql = None  # type: ignore
    HAVE_PSYCOPG = False

from .stores import SESSION_TTL_SECONDS, SessionRecord

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _now() -> int:
    return int(time.time())


def _env_dsn() -> str:
    for var in ("SESSION_DATABASE_URL", "CAMPUS_DATABASE_URL", "DATABASE_URL", "SUPABASE_DB_URL"):
        value = (os.getenv(var) or "").strip()
        if value:
            return value
    return ""


class DBSessionStore:
    """Session store over psycopg; same interface as the memory `SessionStore`.

    `dsn` falls back to `SESSION_DATABASE_URL`, then the app DSN cascade.
    `table` may be schema-qualified and must be a plain identifier.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or _env_dsn()
        if not self._dsn:
            raise RuntimeError("session_store_dsn_missing")
        if not _TABLE_NAME.match(table or ""):
            raise ValueError("invalid_table_name")
        self._table = table

    def _table_ident(self):
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return _sql.SQL("{}.{}").format(_sql.Identifier(schema), _sql.Identifier(name))

    def create(
        self,
        *,
        sub: str,
        roles: Sequence[str],
        name: str = "",
        email: str = "",
        ttl_seconds: int = SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        token = secrets.token_urlsafe(32)
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                stmt = _sql.SQL(
                    "insert into {} (session_token, user_id, expires_at) values (%s, %s, to_timestamp(%s))"
                ).format(self._table_ident())
                cur.execute(stmt, (token, sub, expires_at))
        return SessionRecord(
            session_id=token,
            sub=sub,
            name=name,
            email=email,
            roles=list(roles),
            expires_at=expires_at,
            ttl_seconds=ttl_seconds,
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                stmt = _sql.SQL(
                    "select s.session_token, u.id::text, coalesce(u.name, ''), u.email, u.role, "
                    "extract(epoch from s.expires_at)::bigint "
                    "from {} s join public.users u on u.id = s.user_id "
                    "where s.session_token = %s and s.expires_at > now()"
                ).format(self._table_ident())
                cur.execute(stmt, (session_id,))
                row = cur.fetchone()
        if not row:
            return None
        return SessionRecord(
            session_id=row[0],
            sub=row[1],
            name=row[2],
            email=row[3],
            roles=[row[4]] if row[4] else [],
            expires_at=int(row[5]) if row[5] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                stmt = _sql.SQL("delete from {} where session_token = %s").format(self._table_ident())
                cur.execute(stmt, (session_id,))

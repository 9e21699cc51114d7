"""
Postgres-backed repository for chat (conversations, participants, messages).

Notes:
- Message and read-marker timestamps keep microseconds so "unread" counts
  compare exactly against `last_read_at`.
- Group conversations are unique per course (partial unique index); a race on
  creation resolves to the existing row.
"""
from __future__ import annotations

from typing import Iterable, List, Optional
import os

try:
    import psycopg
    from psycopg.rows import dict_row
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    dict_row = None  # type: ignore
    HAVE_PSYCOPG = False


def _us(col: str) -> str:
    return f"""to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS.US"+00:00"')"""


_CONVERSATION_SELECT = f"""
    select c.id::text as id,
           c.type,
           c.course_id::text as course_id,
           {_us('c.created_at')} as created_at,
           {_us('c.updated_at')} as updated_at,
           coalesce((
               select json_agg(json_build_object('id', u.id::text, 'name', u.name, 'role', u.role, 'email', u.email)
                               order by u.name nulls last)
               from public.conversation_participants p
               join public.users u on u.id = p.user_id
               where p.conversation_id = c.id
           ), '[]'::json) as participants,
           (select json_build_object('id', co.id::text, 'title', co.title) from public.courses co where co.id = c.course_id) as course
    from public.conversations c
"""

_MESSAGE_SELECT = f"""
    select m.id::text as id,
           m.conversation_id::text as conversation_id,
           m.sender_id::text as sender_id,
           m.content,
           {_us('m.created_at')} as created_at,
           case when u.id is null then null else json_build_object(
               'id', u.id::text, 'name', u.name, 'role', u.role, 'email', u.email
           ) end as sender
    from public.messages m
    left join public.users u on u.id = m.sender_id
"""


def _dsn() -> str:
    for dsn in (os.getenv("CAMPUS_DATABASE_URL"), os.getenv("DATABASE_URL"), os.getenv("SUPABASE_DB_URL")):
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBChatRepo")


class DBChatRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBChatRepo")
        self._dsn = dsn or _dsn()

    def _fetch_one(self, sql: str, params=()) -> Optional[dict]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone() if cur.description else None
                conn.commit()
        return dict(row) if row else None

    def _fetch_all(self, sql: str, params=()) -> List[dict]:
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
        return [dict(r) for r in rows]

    def list_direct_conversations(self, user_id: str) -> List[dict]:
        return self._fetch_all(
            _CONVERSATION_SELECT
            + """
            where c.type = 'direct'
              and exists (select 1 from public.conversation_participants p where p.conversation_id = c.id and p.user_id = %s)
            order by c.updated_at desc
            """,
            (user_id,),
        )

    def list_group_conversations(self, course_ids: Iterable[str]) -> List[dict]:
        ids = list(course_ids)
        if not ids:
            return []
        return self._fetch_all(
            _CONVERSATION_SELECT + " where c.type = 'group' and c.course_id = any(%s::uuid[]) order by c.updated_at desc",
            (ids,),
        )

    def get_conversation(self, conversation_id: str) -> Optional[dict]:
        return self._fetch_one(_CONVERSATION_SELECT + " where c.id = %s", (conversation_id,))

    def get_course_conversation(self, course_id: str) -> Optional[dict]:
        return self._fetch_one(_CONVERSATION_SELECT + " where c.type = 'group' and c.course_id = %s", (course_id,))

    def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[str]:
        row = self._fetch_one(
            """
            select c.id::text as id
            from public.conversations c
            where c.type = 'direct'
              and (select array_agg(p.user_id::text order by p.user_id::text)
                   from public.conversation_participants p where p.conversation_id = c.id)
                  = (select array_agg(x order by x) from unnest(array[%s, %s]::text[]) as x)
            limit 1
            """,
            (user_a, user_b),
        )
        return row["id"] if row else None

    def create_conversation(self, *, type: str, course_id: str | None = None, participant_ids: Iterable[str] = ()) -> dict:
        members = list(dict.fromkeys(participant_ids))
        with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.conversations (type, course_id) values (%s, %s)
                    on conflict do nothing
                    returning id::text as id
                    """,
                    (type, course_id),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute(
                        "select id::text as id from public.conversations where type = 'group' and course_id = %s",
                        (course_id,),
                    )
                    row = cur.fetchone()
                cid = row["id"]
                if members:
                    cur.executemany(
                        "insert into public.conversation_participants (conversation_id, user_id) values (%s, %s) on conflict do nothing",
                        [(cid, uid) for uid in members],
                    )
                conn.commit()
        return self.get_conversation(cid) or {}

    def touch_conversation(self, conversation_id: str) -> None:
        self._fetch_one("update public.conversations set updated_at = now() where id = %s", (conversation_id,))

    def list_messages(self, conversation_id: str) -> List[dict]:
        return self._fetch_all(
            _MESSAGE_SELECT + " where m.conversation_id = %s order by m.created_at asc, m.id",
            (conversation_id,),
        )

    def last_message(self, conversation_id: str) -> Optional[dict]:
        return self._fetch_one(
            _MESSAGE_SELECT + " where m.conversation_id = %s order by m.created_at desc, m.id desc limit 1",
            (conversation_id,),
        )

    def create_message(self, conversation_id: str, *, sender_id: str, content: str) -> dict:
        row = self._fetch_one(
            "insert into public.messages (conversation_id, sender_id, content) values (%s, %s, %s) returning id::text as id",
            (conversation_id, sender_id, content),
        )
        return self._fetch_one(_MESSAGE_SELECT + " where m.id = %s", (row["id"],)) or {}

    def get_last_read(self, conversation_id: str, user_id: str) -> Optional[str]:
        row = self._fetch_one(
            f"select {_us('last_read_at')} as last_read_at from public.conversation_participants where conversation_id = %s and user_id = %s",
            (conversation_id, user_id),
        )
        return row["last_read_at"] if row else None

    def count_messages_after(self, conversation_id: str, after: Optional[str]) -> int:
        if after:
            row = self._fetch_one(
                "select count(*)::int as n from public.messages where conversation_id = %s and created_at > %s::timestamptz",
                (conversation_id, after),
            )
        else:
            row = self._fetch_one(
                "select count(*)::int as n from public.messages where conversation_id = %s",
                (conversation_id,),
            )
        return int(row["n"]) if row else 0

    def mark_read(self, conversation_id: str, user_id: str) -> str:
        row = self._fetch_one(
            f"""
            insert into public.conversation_participants (conversation_id, user_id, last_read_at)
            values (%s, %s, now())
            on conflict (conversation_id, user_id) do update set last_read_at = excluded.last_read_at
            returning {_us('last_read_at')} as last_read_at
            """,
            (conversation_id, user_id),
        )
        return row["last_read_at"] if row else ""


__all__ = ["DBChatRepo"]

"""
In-memory session store for development and tests.

Why: Keep session state server-side and the cookie opaque. For production,
use the DB-backed store (`stores_db.DBSessionStore`, `SESSIONS_BACKEND=db`).

Security: Cookies carry only an opaque session id. User context (role, name,
email) stays server-side.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import secrets
import time

SESSION_TTL_SECONDS = 14 * 24 * 3600


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    name: str
    email: str
    roles: list[str] = field(default_factory=list)
    expires_at: Optional[int] = None
    ttl_seconds: int = SESSION_TTL_SECONDS


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(
        self,
        *,
        sub: str,
        roles: list[str],
        name: str = "",
        email: str = "",
        ttl_seconds: int = SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            sub=sub,
            name=name,
            email=email,
            roles=list(roles),
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

"""
Repository and provider registry for the web adapters.

Why:
    Routes should not decide at import time whether Postgres is reachable.
    Accessors build the Postgres-backed repositories lazily. Outside
    production they fall back to a shared in-memory repository when psycopg or
    a DSN is unavailable (local offline work, tests); production-like
    environments raise instead.

Testing:
    `set_repos()` swaps all three repositories at once (usually one
    `InMemoryRepo` instance); `set_room_provider()` injects a fake video
    provider.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from config import is_prod_like
from repo_memory import InMemoryRepo
from teaching.rooms import NullRoomProvider, RoomProvider

logger = logging.getLogger("campus.web")

_MEMORY: Optional[InMemoryRepo] = None
_ACCOUNTS: Any = None
_TEACHING: Any = None
_CHAT: Any = None
_ROOMS: Optional[RoomProvider] = None


def _memory_repo() -> InMemoryRepo:
    global _MEMORY
    if _MEMORY is None:
        _MEMORY = InMemoryRepo()
    return _MEMORY


def _build_default(kind: str, factory):
    try:
        return factory()
    except Exception as exc:
        if is_prod_like():
            logger.error("%s repo unavailable in production: %s", kind, exc.__class__.__name__)
            raise
        logger.warning("%s repo unavailable (%s); using in-memory fallback", kind, exc)
        return _memory_repo()


def _build_accounts_repo():
    from identity_access.repo_db import DBAccountsRepo

    return DBAccountsRepo()


def _build_teaching_repo():
    from teaching.repo_db import DBTeachingRepo

    return DBTeachingRepo()


def _build_chat_repo():
    from messaging.repo_db import DBChatRepo

    return DBChatRepo()


def get_accounts_repo():
    global _ACCOUNTS
    if _ACCOUNTS is None:
        _ACCOUNTS = _build_default("Accounts", _build_accounts_repo)
    return _ACCOUNTS


def get_teaching_repo():
    global _TEACHING
    if _TEACHING is None:
        _TEACHING = _build_default("Teaching", _build_teaching_repo)
    return _TEACHING


def get_chat_repo():
    global _CHAT
    if _CHAT is None:
        _CHAT = _build_default("Chat", _build_chat_repo)
    return _CHAT


def get_room_provider() -> RoomProvider:
    global _ROOMS
    if _ROOMS is None:
        from teaching.rooms_daily import provider_from_env

        provider = provider_from_env()
        if provider is None:
            logger.warning("DAILY_API_KEY not set; live sessions cannot be scheduled")
            provider = NullRoomProvider()
        _ROOMS = provider
    return _ROOMS


def set_repos(*, accounts=None, teaching=None, chat=None) -> None:
    """Allow tests to swap repository implementations."""
    global _ACCOUNTS, _TEACHING, _CHAT
    _ACCOUNTS = accounts
    _TEACHING = teaching
    _CHAT = chat


def set_room_provider(provider: Optional[RoomProvider]) -> None:
    global _ROOMS
    _ROOMS = provider


__all__ = [
    "get_accounts_repo",
    "get_teaching_repo",
    "get_chat_repo",
    "get_room_provider",
    "set_repos",
    "set_room_provider",
]

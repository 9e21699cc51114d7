"""
Chat API routes (direct and course group conversations).

Why:
    Clients poll these endpoints; there is no push channel. `GET
    /api/chat/unread` is the cheap badge endpoint.

Permissions:
    - Direct conversations: participants only; partners are restricted to the
      caller's potential partners.
    - Course conversations: anyone who can view the course.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from messaging.service import MAX_MESSAGE_LENGTH, ChatService
from repos import get_accounts_repo, get_chat_repo, get_teaching_repo
from teaching.services.common import is_uuid_like

from .common import _csrf_guard, _error_from_exception, _json_private, _private_error, _require_caller

chat_router = APIRouter(tags=["Chat"])
logger = logging.getLogger("campus.web.chat")


class DirectConversationCreate(BaseModel):
    partner_id: str


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH * 2)


def _service() -> ChatService:
    return ChatService(get_chat_repo(), get_accounts_repo(), get_teaching_repo())


def _bad_id(detail: str):
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


@chat_router.get("/api/chat/conversations")
async def list_conversations(request: Request):
    """Conversations visible to the caller, most recent activity first."""
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private(_service().list_conversations(caller))


@chat_router.post("/api/chat/conversations")
async def create_direct_conversation(request: Request, payload: DirectConversationCreate):
    """Open (or reuse) a direct conversation with `partner_id`."""
    caller, error = _require_caller(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        conversation = _service().create_direct_conversation(caller, payload.partner_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="create_direct_conversation")
    return _json_private(conversation, status_code=201)


@chat_router.post("/api/chat/courses/{course_id}/conversation")
async def ensure_course_conversation(request: Request, course_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(course_id):
        return _bad_id("invalid_course_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        conversation = _service().ensure_course_conversation(caller, course_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="ensure_course_conversation")
    return _json_private(conversation)


@chat_router.get("/api/chat/conversations/{conversation_id}/messages")
async def list_messages(request: Request, conversation_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(conversation_id):
        return _bad_id("invalid_conversation_id")
    try:
        messages = _service().get_messages(caller, conversation_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="list_messages")
    return _json_private(messages)


@chat_router.post("/api/chat/conversations/{conversation_id}/messages")
async def send_message(request: Request, conversation_id: str, payload: MessageCreate):
    """Append a message; 400 `invalid_content` for blank or oversized text."""
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(conversation_id):
        return _bad_id("invalid_conversation_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        message = _service().send_message(caller, conversation_id, payload.content)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="send_message")
    return _json_private(message, status_code=201)


@chat_router.post("/api/chat/conversations/{conversation_id}/read")
async def mark_read(request: Request, conversation_id: str):
    caller, error = _require_caller(request)
    if error:
        return error
    if not is_uuid_like(conversation_id):
        return _bad_id("invalid_conversation_id")
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        last_read_at = _service().mark_read(caller, conversation_id)
    except Exception as exc:
        return _error_from_exception(exc, log=logger, context="mark_read")
    return _json_private({"last_read_at": last_read_at})


@chat_router.get("/api/chat/partners")
async def list_partners(request: Request):
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private(_service().potential_partners(caller))


@chat_router.get("/api/chat/unread")
async def total_unread(request: Request):
    caller, error = _require_caller(request)
    if error:
        return error
    return _json_private({"unread": _service().total_unread(caller)})

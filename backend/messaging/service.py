"""Chat use cases: conversations, messages, read markers and partners.

Why:
    Chat is plain request/response. Clients poll the conversation list (and
    `total_unread`) instead of subscribing to a change feed, so ordering and
    unread counts are derived from timestamps on every read.

Behavior:
    - Direct conversations have exactly two participants and are reused when
      they already exist.
    - Each course has at most one group conversation; access follows course
      visibility (admin, owning teacher, enrolled student).
    - Unread = messages newer than the caller's `last_read_at` (epoch when the
      caller never read the conversation). Sending marks the conversation read
      for the sender.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from identity_access.callers import Caller, can_view_course

logger = logging.getLogger("campus.messaging")

MAX_MESSAGE_LENGTH = 5000


def _normalize_content(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_content")
    content = value.strip()
    if not content or len(content) > MAX_MESSAGE_LENGTH:
        raise ValueError("invalid_content")
    return content


class ChatService:
    def __init__(self, chat: Any, accounts: Any, teaching: Any) -> None:
        self._chat = chat
        self._accounts = accounts
        self._teaching = teaching

    # --- Access ------------------------------------------------------------------

    def _visible_courses(self, caller: Caller) -> List[dict]:
        if caller.is_admin:
            return self._teaching.list_courses()
        if caller.is_teacher:
            return self._teaching.list_courses(teacher_id=caller.teacher_id) if caller.teacher_id else []
        if caller.student_id:
            return self._teaching.list_courses(student_id=caller.student_id)
        return []

    def _can_access(self, caller: Caller, conversation: dict) -> bool:
        if conversation.get("type") == "group":
            course = self._teaching.get_course(conversation.get("course_id"))
            return can_view_course(caller, course, self._teaching)
        return any(p.get("id") == caller.user_id for p in conversation.get("participants") or [])

    def _conversation_for(self, caller: Caller, conversation_id: str) -> dict:
        conversation = self._chat.get_conversation(conversation_id)
        if not conversation:
            raise LookupError("conversation_not_found")
        if not self._can_access(caller, conversation):
            raise PermissionError("forbidden")
        return conversation

    # --- Conversations -----------------------------------------------------------

    def _summary(self, caller: Caller, conversation: dict) -> dict:
        out = dict(conversation)
        if out.get("type") == "direct":
            out["participants"] = [p for p in out.get("participants") or [] if p.get("id") != caller.user_id]
        last_read = self._chat.get_last_read(conversation["id"], caller.user_id)
        out["last_message"] = self._chat.last_message(conversation["id"])
        out["unread_count"] = self._chat.count_messages_after(conversation["id"], last_read)
        return out

    def list_conversations(self, caller: Caller) -> List[dict]:
        """Direct and course conversations, most recent activity first."""
        direct = self._chat.list_direct_conversations(caller.user_id)
        groups = self._chat.list_group_conversations([c["id"] for c in self._visible_courses(caller)])
        items = [self._summary(caller, c) for c in direct + groups]

        def _activity(item: dict) -> str:
            last = item.get("last_message") or {}
            return str(last.get("created_at") or item.get("updated_at") or "")

        items.sort(key=_activity, reverse=True)
        return items

    def create_direct_conversation(self, caller: Caller, partner_id: object) -> dict:
        if not isinstance(partner_id, str) or not partner_id or partner_id == caller.user_id:
            raise ValueError("invalid_partner")
        if partner_id not in {p["id"] for p in self.potential_partners(caller)}:
            raise PermissionError("partner_not_allowed")
        existing = self._chat.find_direct_conversation(caller.user_id, partner_id)
        if existing:
            conversation = self._chat.get_conversation(existing)
        else:
            conversation = self._chat.create_conversation(type="direct", participant_ids=[caller.user_id, partner_id])
            logger.info("direct conversation created id=%s", conversation.get("id"))
        return self._summary(caller, conversation)

    def ensure_course_conversation(self, caller: Caller, course_id: str) -> dict:
        course = self._teaching.get_course(course_id)
        if not course:
            raise LookupError("course_not_found")
        if not can_view_course(caller, course, self._teaching):
            raise PermissionError("forbidden")
        conversation = self._chat.get_course_conversation(course_id)
        if not conversation:
            conversation = self._chat.create_conversation(type="group", course_id=course_id)
            logger.info("course conversation created course=%s", course_id)
        return self._summary(caller, conversation)

    # --- Messages ----------------------------------------------------------------

    def get_messages(self, caller: Caller, conversation_id: str) -> List[dict]:
        self._conversation_for(caller, conversation_id)
        return self._chat.list_messages(conversation_id)

    def send_message(self, caller: Caller, conversation_id: str, content: object) -> dict:
        self._conversation_for(caller, conversation_id)
        text = _normalize_content(content)
        message = self._chat.create_message(conversation_id, sender_id=caller.user_id, content=text)
        self._chat.touch_conversation(conversation_id)
        self._chat.mark_read(conversation_id, caller.user_id)
        return message

    def mark_read(self, caller: Caller, conversation_id: str) -> str:
        self._conversation_for(caller, conversation_id)
        return self._chat.mark_read(conversation_id, caller.user_id)

    def total_unread(self, caller: Caller) -> int:
        return sum(int(c.get("unread_count") or 0) for c in self.list_conversations(caller))

    # --- Partners ----------------------------------------------------------------

    def potential_partners(self, caller: Caller) -> List[dict]:
        """Users the caller may open a direct conversation with.

        admin: everyone; teacher: students of own courses and admins;
        student: teachers of enrolled courses and admins. Never the caller.
        """
        seen: Dict[str, dict] = {}

        def _add(user_id: Optional[str], name: Any, email: Any, role: str) -> None:
            if user_id and user_id != caller.user_id and user_id not in seen:
                seen[user_id] = {"id": user_id, "name": name, "email": email, "role": role}

        if caller.is_admin:
            for user in self._accounts.list_users():
                _add(user["id"], user.get("name"), user.get("email"), user.get("role"))
            return list(seen.values())

        for admin in self._accounts.list_users(role="admin"):
            _add(admin["id"], admin.get("name"), admin.get("email"), "admin")
        for course in self._visible_courses(caller):
            if caller.is_teacher:
                for student in self._teaching.list_course_students(course["id"]):
                    _add(student.get("user_id"), student.get("name"), student.get("email"), "student")
            else:
                teacher = course.get("teacher") or {}
                _add(teacher.get("user_id"), teacher.get("name"), teacher.get("email"), "teacher")
        return list(seen.values())


__all__ = ["ChatService", "MAX_MESSAGE_LENGTH"]

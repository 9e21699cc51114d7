"""Accounts service: sign-up, sign-in and the admin people directory.

Why:
    Account creation spans three rows (user, password credential, role
    profile). Keeping the sequence here lets web adapters and the CLI share the
    same validation and the same rollback rule: when a later step fails, the
    credential and the user are removed again so no half-created account can
    sign in.

Errors:
    - `ValueError("<code>")` for invalid input (`invalid_email`,
      `invalid_password`, `invalid_role`, `email_taken`, ...).
    - `ValueError("invalid_credentials")` on failed authentication (same code
      for unknown email and wrong password).
    - `LookupError` when a profile does not exist.
"""

from __future__ import annotations

from datetime import date, datetime
import logging
import re
from typing import Any, List, Optional, Protocol

from .domain import ALLOWED_ROLES, SELF_SERVICE_ROLES
from .passwords import hash_password, verify_password

logger = logging.getLogger("campus.identity")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_FEE_STATUSES = frozenset({"paid", "unpaid", "partial"})
_MAX_TEXT = 200

_UNSET = object()


class AccountsRepoProtocol(Protocol):
    def get_user(self, user_id: str) -> Optional[dict]:
        ...

    def get_user_by_email(self, email: str) -> Optional[dict]:
        ...

    def create_user(self, *, email: str, name: str | None, phone: str | None, role: str) -> dict:
        ...

    def update_user(self, user_id: str, **fields: Any) -> Optional[dict]:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        ...

    def get_password_hash(self, user_id: str) -> Optional[str]:
        ...

    def delete_credentials(self, user_id: str) -> None:
        ...

    def create_teacher_profile(self, user_id: str, **fields: Any) -> dict:
        ...

    def create_student_profile(self, user_id: str, **fields: Any) -> dict:
        ...

    def get_teacher(self, teacher_id: str) -> Optional[dict]:
        ...

    def get_student(self, student_id: str) -> Optional[dict]:
        ...

    def update_teacher_profile(self, teacher_id: str, **fields: Any) -> Optional[dict]:
        ...

    def update_student_profile(self, student_id: str, **fields: Any) -> Optional[dict]:
        ...

    def delete_teacher_profile(self, teacher_id: str) -> bool:
        ...

    def delete_student_profile(self, student_id: str) -> bool:
        ...


def normalize_email(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_email")
    email = value.strip().lower()
    if not email or len(email) > 320 or not _EMAIL_RE.match(email):
        raise ValueError("invalid_email")
    return email


def _normalize_text(value: object, code: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(code)
    trimmed = value.strip()
    if len(trimmed) > _MAX_TEXT:
        raise ValueError(code)
    return trimmed or None


def _normalize_role(value: object) -> str:
    role = value.strip().lower() if isinstance(value, str) else ""
    if role not in ALLOWED_ROLES:
        raise ValueError("invalid_role")
    return role


def _normalize_fee_status(value: object) -> Optional[str]:
    if value is None:
        return None
    status = value.strip().lower() if isinstance(value, str) else ""
    if status not in _FEE_STATUSES:
        raise ValueError("invalid_fee_status")
    return status


def _normalize_join_date(value: object) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValueError("invalid_join_date") from exc
    raise ValueError("invalid_join_date")


def _student_fields(raw: dict) -> dict:
    out: dict = {}
    if "student_number" in raw:
        out["student_number"] = _normalize_text(raw["student_number"], "invalid_student_number")
    if "fee_status" in raw:
        out["fee_status"] = _normalize_fee_status(raw["fee_status"])
    if "gender" in raw:
        out["gender"] = _normalize_text(raw["gender"], "invalid_gender")
    if "join_date" in raw:
        out["join_date"] = _normalize_join_date(raw["join_date"])
    if "phone" in raw:
        out["phone"] = _normalize_text(raw["phone"], "invalid_phone")
    if "image_url" in raw:
        out["image_url"] = _normalize_text(raw["image_url"], "invalid_image_url")
    return out


def _teacher_fields(raw: dict) -> dict:
    out: dict = {}
    if "phone" in raw:
        out["phone"] = _normalize_text(raw["phone"], "invalid_phone")
    if "join_date" in raw:
        out["join_date"] = _normalize_join_date(raw["join_date"])
    if "qualification" in raw:
        out["qualification"] = _normalize_text(raw["qualification"], "invalid_qualification")
    if "image_url" in raw:
        out["image_url"] = _normalize_text(raw["image_url"], "invalid_image_url")
    return out


class AccountsService:
    def __init__(self, repo: AccountsRepoProtocol) -> None:
        self._repo = repo

    # --- Account lifecycle -------------------------------------------------------

    def _create_account(self, *, email: object, password: object, name: object, role: str, profile: dict) -> dict:
        normalized_email = normalize_email(email)
        display_name = _normalize_text(name, "invalid_name")
        password_hash = hash_password(password if isinstance(password, str) else "")
        if self._repo.get_user_by_email(normalized_email):
            raise ValueError("email_taken")
        user = self._repo.create_user(
            email=normalized_email,
            name=display_name,
            phone=profile.get("phone"),
            role=role,
        )
        try:
            self._repo.set_password_hash(user["id"], password_hash)
            if role == "teacher":
                created = self._repo.create_teacher_profile(user["id"], **profile)
            elif role == "student":
                created = self._repo.create_student_profile(user["id"], **profile)
            else:
                created = None
        except Exception:
            self._rollback_user(user["id"])
            raise
        return {"user": user, "profile": created}

    def _rollback_user(self, user_id: str) -> None:
        try:
            self._repo.delete_credentials(user_id)
            self._repo.delete_user(user_id)
        except Exception as exc:
            logger.warning("account rollback failed user=%s err=%s", user_id, exc.__class__.__name__)

    def sign_up(self, *, email: object, password: object, name: object = None, role: object = "student", allow_admin: bool = False) -> dict:
        """Create a self-service account and return the user row.

        Admin accounts are only accepted when `allow_admin` is set (CLI or an
        explicit deployment flag).
        """
        normalized_role = _normalize_role(role)
        if normalized_role not in SELF_SERVICE_ROLES and not allow_admin:
            raise ValueError("invalid_role")
        created = self._create_account(email=email, password=password, name=name, role=normalized_role, profile={})
        logger.info("account created role=%s user=%s", normalized_role, created["user"]["id"])
        return created["user"]

    def authenticate(self, email: object, password: object) -> dict:
        plain = password if isinstance(password, str) else ""
        try:
            normalized = normalize_email(email)
        except ValueError as exc:
            verify_password(plain, None)
            raise ValueError("invalid_credentials") from exc
        user = self._repo.get_user_by_email(normalized)
        hashed = self._repo.get_password_hash(user["id"]) if user else None
        # Exactly one bcrypt check per attempt, with or without a user.
        matched = verify_password(plain, hashed)
        if not user or not matched:
            raise ValueError("invalid_credentials")
        return user

    # --- Admin directory: students -----------------------------------------------

    def create_student(self, *, email: object, password: object, name: object = None, **fields: Any) -> dict:
        profile = _student_fields(fields)
        created = self._create_account(email=email, password=password, name=name, role="student", profile=profile)
        return created["profile"]

    def update_student(self, student_id: str, **fields: Any) -> dict:
        student = self._repo.get_student(student_id)
        if not student:
            raise LookupError("student_not_found")
        self._update_user_fields(student["user_id"], fields)
        profile = _student_fields(fields)
        updated = self._repo.update_student_profile(student_id, **profile) if profile else self._repo.get_student(student_id)
        if not updated:
            raise LookupError("student_not_found")
        return updated

    def delete_student(self, student_id: str) -> None:
        student = self._repo.get_student(student_id)
        if not student:
            raise LookupError("student_not_found")
        self._repo.delete_student_profile(student_id)
        self._repo.delete_credentials(student["user_id"])
        self._repo.delete_user(student["user_id"])

    # --- Admin directory: teachers -----------------------------------------------

    def create_teacher(self, *, email: object, password: object, name: object = None, **fields: Any) -> dict:
        profile = _teacher_fields(fields)
        created = self._create_account(email=email, password=password, name=name, role="teacher", profile=profile)
        return created["profile"]

    def update_teacher(self, teacher_id: str, **fields: Any) -> dict:
        teacher = self._repo.get_teacher(teacher_id)
        if not teacher:
            raise LookupError("teacher_not_found")
        self._update_user_fields(teacher["user_id"], fields)
        profile = _teacher_fields(fields)
        updated = self._repo.update_teacher_profile(teacher_id, **profile) if profile else self._repo.get_teacher(teacher_id)
        if not updated:
            raise LookupError("teacher_not_found")
        return updated

    def delete_teacher(self, teacher_id: str) -> None:
        teacher = self._repo.get_teacher(teacher_id)
        if not teacher:
            raise LookupError("teacher_not_found")
        self._repo.delete_teacher_profile(teacher_id)
        self._repo.delete_credentials(teacher["user_id"])
        self._repo.delete_user(teacher["user_id"])

    def _update_user_fields(self, user_id: str, raw: dict) -> None:
        updates: dict = {}
        if "name" in raw:
            updates["name"] = _normalize_text(raw["name"], "invalid_name")
        if "email" in raw:
            email = normalize_email(raw["email"])
            existing = self._repo.get_user_by_email(email)
            if existing and existing["id"] != user_id:
                raise ValueError("email_taken")
            updates["email"] = email
        if "password" in raw and raw["password"] is not None:
            self._repo.set_password_hash(user_id, hash_password(raw["password"]))
        if updates:
            self._repo.update_user(user_id, **updates)


def list_people(repo: Any, role: str) -> List[dict]:
    """Directory listing for a profile role (`teacher` or `student`)."""
    if role == "teacher":
        return repo.list_teachers()
    if role == "student":
        return repo.list_students()
    raise ValueError("invalid_role")


__all__ = ["AccountsService", "normalize_email", "list_people"]

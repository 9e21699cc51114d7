"""Input normalisers shared by the teaching services.

Every helper raises `ValueError("<code>")`; web adapters surface the code as
`{"error": "bad_request", "detail": code}`.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional
from uuid import UUID


def normalize_title(value: object, *, code: str = "invalid_title", required: bool = True, max_length: int = 200) -> Optional[str]:
    if value is None:
        if required:
            raise ValueError(code)
        return None
    if not isinstance(value, str):
        raise ValueError(code)
    trimmed = value.strip()
    if not trimmed:
        if required:
            raise ValueError(code)
        return None
    if len(trimmed) > max_length:
        raise ValueError(code)
    return trimmed


def normalize_text(value: object, *, code: str, max_length: int = 10_000) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > max_length:
        raise ValueError(code)
    trimmed = value.strip()
    return trimmed or None


def parse_datetime(value: object, *, code: str) -> datetime:
    """Parse ISO-8601 (or `datetime-local`) input into an aware UTC datetime.

    Naive values are interpreted as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(code) from exc
    else:
        raise ValueError(code)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_optional_datetime(value: object, *, code: str) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_datetime(value, code=code)


def parse_optional_date(value: object, *, code: str) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValueError(code) from exc
    raise ValueError(code)


def is_uuid_like(value: object) -> bool:
    try:
        UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def normalize_id_list(value: object, *, code: str = "invalid_student_ids", required: bool = False) -> List[str]:
    """Return de-duplicated UUID strings in input order."""
    if value is None:
        items: list = []
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValueError(code)
    out: List[str] = []
    for item in items:
        if not isinstance(item, str) or not is_uuid_like(item):
            raise ValueError(code)
        if item not in out:
            out.append(item)
    if required and not out:
        raise ValueError(code)
    return out


def normalize_marks(value: object, *, code: str, default: Optional[int] = None, minimum: int = 0) -> Optional[int]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError(code)
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(code) from exc
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(code)
    if number < minimum or number > 100_000:
        raise ValueError(code)
    return number


def ensure_students_exist(accounts: Any, student_ids: Iterable[str], *, code: str = "invalid_student_ids") -> None:
    for sid in student_ids:
        if not accounts.get_student(sid):
            raise ValueError(code)


__all__ = [
    "normalize_title",
    "normalize_text",
    "parse_datetime",
    "parse_optional_datetime",
    "parse_optional_date",
    "is_uuid_like",
    "normalize_id_list",
    "normalize_marks",
    "ensure_students_exist",
]

"""Course calendar: group dated curriculum items into weeks.

Weeks are counted from the course start (normalised to midnight):
`week_index = floor((item_date - start) / 7 days)`. Items with a missing or
unparsable date are left out. Non-empty weeks are labelled "Week 1",
"Week 2", ... in increasing index order, so a gap week does not consume a
label.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

_WEEK = timedelta(days=7)
_WEEK_END = timedelta(days=6, hours=23, minutes=59, seconds=59, milliseconds=999)

DateLike = Union[str, date, datetime, None]


def parse_when(value: DateLike) -> Optional[datetime]:
    """Parse an ISO string / date / datetime into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def group_by_week(
    start: DateLike,
    items: Iterable[Dict[str, Any]],
    *,
    date_key: Union[str, Callable[[Dict[str, Any]], DateLike]] = "date",
) -> List[Dict[str, Any]]:
    """Bucket `items` into calendar weeks relative to `start`.

    Returns a list of `{"label", "week_index", "start", "end", "items"}` dicts
    sorted by week index; items inside a week are sorted by date. Raises
    `ValueError("invalid_start")` when `start` cannot be parsed.
    """
    origin = parse_when(start)
    if origin is None:
        raise ValueError("invalid_start")
    origin = _midnight(origin)

    getter = date_key if callable(date_key) else (lambda item: item.get(date_key))
    buckets: Dict[int, List[tuple]] = {}
    for item in items:
        when = parse_when(getter(item))
        if when is None:
            continue
        index = (when - origin) // _WEEK
        buckets.setdefault(index, []).append((when, item))

    groups: List[Dict[str, Any]] = []
    for position, index in enumerate(sorted(buckets), start=1):
        week_start = origin + index * _WEEK
        entries = sorted(buckets[index], key=lambda pair: pair[0])
        groups.append(
            {
                "label": f"Week {position}",
                "week_index": index,
                "start": week_start.isoformat(),
                "end": (week_start + _WEEK_END).isoformat(timespec="milliseconds"),
                "items": [item for _, item in entries],
            }
        )
    return groups


def course_calendar_items(sessions: Iterable[dict], assignments: Iterable[dict], quizzes: Iterable[dict]) -> List[dict]:
    """Flatten a course's sessions, assignments and quizzes into dated items."""
    items: List[dict] = []
    for s in sessions:
        items.append({"type": "session", "id": s.get("id"), "title": s.get("title"), "date": s.get("scheduled_at")})
    for a in assignments:
        items.append({"type": "assignment", "id": a.get("id"), "title": a.get("title"), "date": a.get("due_at")})
    for q in quizzes:
        items.append({"type": "quiz", "id": q.get("id"), "title": q.get("title"), "date": q.get("due_at")})
    return items


__all__ = ["group_by_week", "parse_when", "course_calendar_items"]

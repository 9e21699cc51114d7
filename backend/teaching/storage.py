"""Storage adapter interface for course files and coursework attachments."""
from __future__ import annotations

import re
from typing import Optional, Protocol

_COURSE_KEY_RE = re.compile(r"courses/([^/]+)/(.+)$")


class StorageAdapterProtocol(Protocol):
    """Protocol describing the storage adapter used for uploaded files."""

    def upload(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None: ...

    def public_url(self, *, bucket: str, key: str) -> str: ...

    def delete_object(self, *, bucket: str, key: str) -> None: ...


class NullStorageAdapter:
    """Fallback adapter that signals the storage backend is not configured."""

    def upload(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def public_url(self, *, bucket: str, key: str) -> str:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def delete_object(self, *, bucket: str, key: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")


def course_file_key(course_id: str, token: str, filename: str) -> str:
    """Build `courses/<course_id>/<token>.<ext>` keeping the original extension."""
    ext = ""
    if "." in (filename or ""):
        ext = filename.rsplit(".", 1)[-1].strip().lower()
    ext = re.sub(r"[^a-z0-9]", "", ext)[:16]
    return f"courses/{course_id}/{token}.{ext}" if ext else f"courses/{course_id}/{token}"


def storage_key_from_public_url(file_path: str, course_id: Optional[str] = None) -> str:
    """Recover the bucket-relative key from a stored public URL.

    Rows keep the public URL of the object. When the URL contains a
    `courses/<id>/<name>` tail, that tail is the key (rebased onto `course_id`
    when given); any other value is returned unchanged.
    """
    match = _COURSE_KEY_RE.search(file_path or "")
    if not match:
        return file_path
    owner = course_id or match.group(1)
    return f"courses/{owner}/{match.group(2)}"


__all__ = ["StorageAdapterProtocol", "NullStorageAdapter", "course_file_key", "storage_key_from_public_url"]

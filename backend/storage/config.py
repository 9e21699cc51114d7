"""
Centralized storage configuration for buckets and upload limits.

Intent:
    Single source of truth for bucket names and their environment overrides,
    shared by the course-file routes, the bootstrap helper and the CLI.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


COURSE_FILES_BUCKET_DEFAULT = "course-files"
CHAT_ATTACHMENTS_BUCKET = "chat-attachments"
ASSIGNMENT_ATTACHMENTS_BUCKET = "assignment-attachments"
SUBMISSION_ATTACHMENTS_BUCKET = "submission-attachments"
AVATARS_BUCKET = "avatars"

_COURSE_FILES_CONTRACT_MAX = 25 * 1024 * 1024


def get_course_files_bucket() -> str:
    """Return the configured course-files bucket name.

    Env:
        COURSE_FILES_BUCKET – optional override; otherwise defaults to
        COURSE_FILES_BUCKET_DEFAULT.
    """
    return (os.getenv("COURSE_FILES_BUCKET") or COURSE_FILES_BUCKET_DEFAULT).strip()


def required_buckets() -> list[str]:
    """Buckets the application expects to exist (course files first)."""
    return [
        get_course_files_bucket(),
        CHAT_ATTACHMENTS_BUCKET,
        ASSIGNMENT_ATTACHMENTS_BUCKET,
        SUBMISSION_ATTACHMENTS_BUCKET,
        AVATARS_BUCKET,
    ]


def public_buckets() -> set[str]:
    """Buckets served through public URLs (rows store the public URL)."""
    return {get_course_files_bucket(), AVATARS_BUCKET}


# --- Size limits --------------------------------------------------------------

def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_course_files_max_upload_bytes() -> int:
    """Maximum upload size for course files (default/clamped 25 MiB)."""
    return _parse_int_env(
        "COURSE_FILES_MAX_UPLOAD_BYTES", _COURSE_FILES_CONTRACT_MAX, contract_max=_COURSE_FILES_CONTRACT_MAX
    )


__all__ = [
    "COURSE_FILES_BUCKET_DEFAULT",
    "CHAT_ATTACHMENTS_BUCKET",
    "ASSIGNMENT_ATTACHMENTS_BUCKET",
    "SUBMISSION_ATTACHMENTS_BUCKET",
    "AVATARS_BUCKET",
    "get_course_files_bucket",
    "required_buckets",
    "public_buckets",
    "get_course_files_max_upload_bytes",
]

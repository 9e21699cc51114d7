"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between tools, services and web layer.
- Every account carries exactly one role; session records keep a list so that
  role checks read the same way everywhere (`role in user["roles"]`).
"""

from __future__ import annotations

from typing import Iterable

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "admin"})

# Roles a visitor may pick on the public sign-up form.
SELF_SERVICE_ROLES = frozenset({"student", "teacher"})

_ROLE_PRIORITY = ("admin", "teacher", "student")


def primary_role(roles: Iterable[str]) -> str:
    """Return the most privileged known role (admin > teacher > student)."""
    lowered = [r.lower() for r in roles if isinstance(r, str)]
    for r in _ROLE_PRIORITY:
        if r in lowered:
            return r
    return "student"


__all__ = ["ALLOWED_ROLES", "SELF_SERVICE_ROLES", "primary_role"]

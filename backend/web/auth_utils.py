"""
Shared authentication utilities.

Why:
    The session cookie is set by sign-in/sign-up and cleared by sign-out; the
    flags must be identical everywhere or browsers keep stale duplicates.
"""

from __future__ import annotations


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"
      - httponly: True
    """
    return {"secure": True, "samesite": "lax", "httponly": True}

"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the same-origin check behind the CSRF guard of every write endpoint.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _server_origin(request: Request) -> tuple[str, str, int]:
    """Origin the app is served under; honours X-Forwarded-* only when trusted."""
    trust_proxy = (os.getenv("CAMPUS_TRUST_PROXY", "false") or "").lower() == "true"
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else _default_port(scheme)
    if not trust_proxy:
        return scheme, host, port

    xf_proto = (request.headers.get("x-forwarded-proto") or "").split(",")[0].strip()
    xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
    scheme = (xf_proto or scheme).lower()
    port = _default_port(scheme) if xf_proto else port
    if xf_host:
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            host = host_only.lower()
            port = int(port_str) if port_str.isdigit() else _default_port(scheme)
        else:
            host = xf_host.lower()
    xf_port = (request.headers.get("x-forwarded-port") or "").split(",")[0].strip()
    if xf_port.isdigit():
        port = int(xf_port)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    """
    try:
        server = _server_origin(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False

"""
Daily.co room provider (REST API, requests).

Design:
- Framework-agnostic; one HTTP call per operation, 10s timeout.
- Rooms are named `session-{epoch_ms}-{rand7}` and expire at `exp` (unix
  seconds) so forgotten rooms are reclaimed by the provider.
- Non-2xx responses raise `RuntimeError("<operation>_failed")`; callers decide
  whether the failure is fatal (room creation) or best-effort (cleanup).

Security:
- Never log the API key or meeting tokens.
"""
from __future__ import annotations

from typing import Dict, Optional
import logging
import os
import secrets
import string
import time

import requests

logger = logging.getLogger("campus.video")

DEFAULT_API_BASE = "https://api.daily.co/v1"
_ROOM_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def _room_name() -> str:
    suffix = "".join(secrets.choice(_ROOM_SUFFIX_ALPHABET) for _ in range(7))
    return f"session-{int(time.time() * 1000)}-{suffix}"


class DailyRoomProvider:
    def __init__(self, api_key: str, *, api_base: str | None = None, privacy: str | None = None) -> None:
        if not api_key:
            raise ValueError("daily_api_key_missing")
        self._api_key = api_key
        self._base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self._privacy = privacy or "private"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    def create_room(
        self,
        *,
        exp: int,
        privacy: Optional[str] = None,
        enable_chat: bool = True,
        enable_screenshare: bool = True,
    ) -> dict:
        payload = {
            "name": _room_name(),
            "privacy": privacy or self._privacy,
            "properties": {
                "max_participants": 100,
                "enable_chat": bool(enable_chat),
                "enable_screenshare": bool(enable_screenshare),
                "enable_recording": False,
                "enable_transcription": False,
                "start_video_off": False,
                "start_audio_off": False,
                "enable_prejoin_ui": True,
                "enable_knocking": False,
                "exp": int(exp),
            },
        }
        r = requests.post(f"{self._base}/rooms", headers=self._headers(), json=payload, timeout=10)
        if not r.ok:
            logger.warning("daily room create failed status=%s", r.status_code)
            raise RuntimeError("room_create_failed")
        body = r.json() or {}
        if not body.get("url") or not body.get("name"):
            raise RuntimeError("room_create_failed")
        return {"id": body.get("id"), "name": body["name"], "url": body["url"]}

    def delete_room(self, name: str) -> None:
        r = requests.delete(f"{self._base}/rooms/{name}", headers=self._headers(), timeout=10)
        # 404: room already deleted or expired
        if not r.ok and r.status_code != 404:
            logger.warning("daily room delete failed room=%s status=%s", name, r.status_code)
            raise RuntimeError("room_delete_failed")

    def create_meeting_token(
        self,
        *,
        room_name: str,
        user_name: Optional[str] = None,
        is_owner: bool = False,
        exp: Optional[int] = None,
    ) -> str:
        properties: Dict[str, object] = {"room_name": room_name, "is_owner": bool(is_owner)}
        if user_name:
            properties["user_name"] = user_name
        if exp is not None:
            properties["exp"] = int(exp)
        r = requests.post(
            f"{self._base}/meeting-tokens",
            headers=self._headers(),
            json={"properties": properties},
            timeout=10,
        )
        if not r.ok:
            logger.warning("daily meeting token failed room=%s status=%s", room_name, r.status_code)
            raise RuntimeError("meeting_token_failed")
        token = (r.json() or {}).get("token")
        if not token:
            raise RuntimeError("meeting_token_failed")
        return str(token)


def provider_from_env():
    """Return a `DailyRoomProvider` when `DAILY_API_KEY` is set, else None."""
    key = (os.getenv("DAILY_API_KEY") or "").strip()
    if not key:
        return None
    return DailyRoomProvider(
        key,
        api_base=os.getenv("DAILY_API_BASE") or None,
        privacy=os.getenv("DAILY_ROOM_PRIVACY") or None,
    )


__all__ = ["DailyRoomProvider", "provider_from_env", "DEFAULT_API_BASE"]

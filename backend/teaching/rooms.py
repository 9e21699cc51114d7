"""
Video room provider port for live course sessions.

Why: Session scheduling provisions an external meeting room before the
session row is written. The scheduler depends on this small protocol so tests
can swap in a fake provider and deployments without `DAILY_API_KEY` fail
loudly instead of writing sessions without rooms.
"""
from __future__ import annotations

from typing import Optional, Protocol


class RoomProvider(Protocol):
    def create_room(
        self,
        *,
        exp: int,
        privacy: Optional[str] = None,
        enable_chat: bool = True,
        enable_screenshare: bool = True,
    ) -> dict:
        """Create a room and return at least `{"name", "url"}` (plus `id`)."""
        ...

    def delete_room(self, name: str) -> None:
        """Delete a room; an already missing room counts as deleted."""
        ...

    def create_meeting_token(
        self,
        *,
        room_name: str,
        user_name: Optional[str] = None,
        is_owner: bool = False,
        exp: Optional[int] = None,
    ) -> str:
        ...


class NullRoomProvider:
    """Fallback provider that signals missing configuration."""

    def create_room(self, **_: object) -> dict:  # pragma: no cover - trivial
        raise RuntimeError("video_provider_not_configured")

    def delete_room(self, name: str) -> None:  # pragma: no cover - trivial
        raise RuntimeError("video_provider_not_configured")

    def create_meeting_token(self, **_: object) -> str:  # pragma: no cover - trivial
        raise RuntimeError("video_provider_not_configured")


__all__ = ["RoomProvider", "NullRoomProvider"]

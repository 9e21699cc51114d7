"""
Daily.co room provider: request shape, error mapping and env wiring.

All HTTP calls are replaced by recording fakes; no network access.
"""
from __future__ import annotations

import re
import types

import pytest

import teaching.rooms_daily as daily  # type: ignore


class _Resp:
    def __init__(self, status_code: int, body: dict | None = None):
        self.status_code = status_code
        self._body = body or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        return self._body


def _install(monkeypatch, *, post=None, delete=None) -> list:
    calls: list = []

    def _post(url, headers, json, timeout):
        calls.append(("POST", url, headers, json, timeout))
        return post(url, json) if post else _Resp(200, {})

    def _delete(url, headers, timeout):
        calls.append(("DELETE", url, headers, None, timeout))
        return delete(url) if delete else _Resp(200, {"deleted": True})

    monkeypatch.setattr(daily, "requests", types.SimpleNamespace(post=_post, delete=_delete))
    return calls


def test_create_room_payload_and_result(monkeypatch):
    def _post(url, body):
        return _Resp(200, {"id": "r1", "name": body["name"], "url": f"https://campus.daily.co/{body['name']}"})

    calls = _install(monkeypatch, post=_post)
    provider = daily.DailyRoomProvider("k-123")
    room = provider.create_room(exp=1_700_000_000)

    method, url, headers, body, timeout = calls[0]
    assert (method, url, timeout) == ("POST", "https://api.daily.co/v1/rooms", 10)
    assert headers["Authorization"] == "Bearer k-123"
    assert re.fullmatch(r"session-\d+-[a-z0-9]{7}", body["name"])
    assert body["privacy"] == "private"
    assert body["properties"]["exp"] == 1_700_000_000
    assert body["properties"]["enable_recording"] is False
    assert room == {"id": "r1", "name": body["name"], "url": f"https://campus.daily.co/{body['name']}"}


def test_create_room_failure_raises(monkeypatch):
    _install(monkeypatch, post=lambda url, body: _Resp(500))
    with pytest.raises(RuntimeError, match="room_create_failed"):
        daily.DailyRoomProvider("k").create_room(exp=1)


def test_delete_room_tolerates_missing_room(monkeypatch):
    calls = _install(monkeypatch, delete=lambda url: _Resp(404))
    daily.DailyRoomProvider("k").delete_room("session-1-abcdefg")
    assert calls[0][1] == "https://api.daily.co/v1/rooms/session-1-abcdefg"

    _install(monkeypatch, delete=lambda url: _Resp(500))
    with pytest.raises(RuntimeError, match="room_delete_failed"):
        daily.DailyRoomProvider("k").delete_room("session-1-abcdefg")


def test_meeting_token(monkeypatch):
    calls = _install(monkeypatch, post=lambda url, body: _Resp(200, {"token": "tok"}))
    token = daily.DailyRoomProvider("k").create_meeting_token(
        room_name="session-1-abcdefg", user_name="Ada", is_owner=True, exp=99
    )
    assert token == "tok"
    _, url, _, body, _ = calls[0]
    assert url.endswith("/meeting-tokens")
    assert body == {"properties": {"room_name": "session-1-abcdefg", "is_owner": True, "user_name": "Ada", "exp": 99}}

    _install(monkeypatch, post=lambda url, body: _Resp(200, {}))
    with pytest.raises(RuntimeError, match="meeting_token_failed"):
        daily.DailyRoomProvider("k").create_meeting_token(room_name="r")


def test_provider_from_env(monkeypatch):
    monkeypatch.delenv("DAILY_API_KEY", raising=False)
    assert daily.provider_from_env() is None
    monkeypatch.setenv("DAILY_API_KEY", "k")
    monkeypatch.setenv("DAILY_API_BASE", "https://daily.test/v1/")
    calls = _install(monkeypatch, delete=lambda url: _Resp(200))
    provider = daily.provider_from_env()
    provider.delete_room("x")
    assert calls[0][1] == "https://daily.test/v1/rooms/x"


def test_missing_api_key_is_rejected():
    with pytest.raises(ValueError):
        daily.DailyRoomProvider("")

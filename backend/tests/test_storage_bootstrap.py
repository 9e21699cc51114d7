"""
Storage bootstrap: ensure the application buckets exist.

Scope:
    - Unit-style: monkeypatch requests.get/post to avoid network calls.
    - Verifies that only missing buckets are created, with the right
      visibility, and that failures are logged rather than raised.
"""
from __future__ import annotations

import logging
import types

import pytest
import requests

import backend.storage.bootstrap as bootstrap  # type: ignore
from backend.storage.config import required_buckets  # type: ignore


class _Resp:
    def __init__(self, status_code: int, body, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        return self._body


def _env(monkeypatch):
    monkeypatch.setenv("AUTO_CREATE_STORAGE_BUCKETS", "true")
    monkeypatch.setenv("SUPABASE_URL", "http://local.test:54321")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "secret")


def test_bootstrap_creates_only_missing_buckets(monkeypatch):
    _env(monkeypatch)
    existing = [{"id": "course-files", "name": "course-files"}, {"id": "chat-attachments", "name": "chat-attachments"}]
    posted: list[dict] = []

    def fake_get(url: str, headers: dict[str, str]):
        assert url == "http://local.test:54321/storage/v1/bucket"
        assert headers["Authorization"] == "Bearer secret"
        return _Resp(200, existing + [{"name": p["name"]} for p in posted])

    def fake_post(url: str, headers: dict[str, str], json: dict):
        posted.append(json)
        return _Resp(200, {"name": json["name"]})

    monkeypatch.setattr(bootstrap, "requests", types.SimpleNamespace(get=fake_get, post=fake_post, RequestException=requests.RequestException))

    assert bootstrap.ensure_buckets_from_env() is True
    assert [p["name"] for p in posted] == ["assignment-attachments", "submission-attachments", "avatars"]
    visibility = {p["name"]: p["public"] for p in posted}
    assert visibility == {"assignment-attachments": False, "submission-attachments": False, "avatars": True}


def test_bootstrap_is_off_without_flag(monkeypatch):
    _env(monkeypatch)
    monkeypatch.setenv("AUTO_CREATE_STORAGE_BUCKETS", "false")

    def _fail(*args, **kwargs):
        raise AssertionError("no network calls expected")

    monkeypatch.setattr(bootstrap, "requests", types.SimpleNamespace(get=_fail, post=_fail, RequestException=requests.RequestException))
    assert bootstrap.ensure_buckets_from_env() is False


def test_bootstrap_logs_when_create_fails(monkeypatch, caplog):
    """Logs a warning with status code when create returns non-2xx (e.g., 409)."""
    _env(monkeypatch)

    def fake_get(url: str, headers: dict[str, str]):
        return _Resp(200, [{"name": name} for name in required_buckets()[1:]])

    def fake_post(url: str, headers: dict[str, str], json: dict):
        return _Resp(409, {"message": "conflict"}, text="conflict")

    monkeypatch.setattr(bootstrap, "requests", types.SimpleNamespace(get=fake_get, post=fake_post, RequestException=requests.RequestException))
    caplog.set_level(logging.DEBUG, logger="campus.storage")

    assert bootstrap.ensure_buckets(
        "http://local.test:54321", "secret", required_buckets()
    ) == []
    msgs = "\n".join(rec.message for rec in caplog.records)
    assert "create bucket 'course-files' failed" in msgs and "status=409" in msgs


def test_bootstrap_warns_when_bucket_missing_after_create(monkeypatch, caplog):
    """Warns when the API accepted the create but the bucket never shows up."""
    _env(monkeypatch)

    def fake_get(url: str, headers: dict[str, str]):
        return _Resp(200, [])

    def fake_post(url: str, headers: dict[str, str], json: dict):
        return _Resp(200, {"name": json["name"]}, text="ok")

    monkeypatch.setattr(bootstrap, "requests", types.SimpleNamespace(get=fake_get, post=fake_post, RequestException=requests.RequestException))
    caplog.set_level(logging.DEBUG, logger="campus.storage")

    created = bootstrap.ensure_buckets("http://local.test:54321", "secret", ["avatars"], public=["avatars"])
    assert created == ["avatars"]
    msgs = "\n".join(rec.message for rec in caplog.records)
    assert "POST /storage/v1/bucket" in msgs
    assert "still missing after create attempt" in msgs


def test_requests_get_receives_timeout_when_supported(monkeypatch):
    seen: dict = {}

    def fake_get(url: str, headers: dict[str, str], timeout=None):
        seen["timeout"] = timeout
        return _Resp(200, [])

    monkeypatch.setattr(bootstrap, "requests", types.SimpleNamespace(get=fake_get, post=None, RequestException=requests.RequestException))
    assert bootstrap.list_buckets("http://local.test:54321", "secret") == []
    assert seen["timeout"] == (3, 10)

"""
Liveness and readiness probes.
"""
from __future__ import annotations

import pytest

import repos  # type: ignore
import routes.courses as courses_routes  # type: ignore
from teaching.rooms import NullRoomProvider  # type: ignore
from utils.fakes import FakeStorageAdapter
from utils.seed import client_for, make_teacher

pytestmark = pytest.mark.anyio("asyncio")


async def test_liveness_is_public():
    async with client_for() as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}
    assert r.headers["Cache-Control"] == "private, no-store"


async def test_readiness_reports_degraded_integrations():
    repos.set_room_provider(NullRoomProvider())
    async with client_for() as c:
        r = await c.get("/health/ready")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ready"
    checks = {c["check"]: c["status"] for c in body["checks"]}
    assert checks == {"database": "ok", "video_provider": "degraded", "storage": "degraded"}


async def test_readiness_all_ok_with_fakes(rooms):
    courses_routes.set_storage_adapter(FakeStorageAdapter())
    async with client_for() as c:
        r = await c.get("/health/ready")
    assert {c["status"] for c in r.json()["checks"]} == {"ok"}


async def test_readiness_fails_when_database_is_down(memory_repo, monkeypatch):
    def _down(role=None):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(memory_repo, "count_users", _down)
    async with client_for() as c:
        r = await c.get("/health/ready")
    assert r.status_code == 503
    body = r.json()
    assert body["status"] == "unavailable"
    assert body["checks"][0] == {"check": "database", "status": "failed", "detail": "RuntimeError"}


async def test_validation_errors_are_400_with_fields(memory_repo):
    async with client_for(make_teacher(memory_repo)) as c:
        r = await c.post("/api/sessions", json={"course_id": "x"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "bad_request"
    assert body["detail"] == "invalid_input"
    assert {f["field"] for f in body["fields"]} >= {"scheduled_at", "duration_minutes"}
    assert r.headers["Cache-Control"] == "private, no-store"

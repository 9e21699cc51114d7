"""
Live sessions API: scheduling with room provisioning, join tokens and CSRF.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import time

import anyio
import pytest

import repos  # type: ignore
from utils.fakes import FakeRoomProvider
from utils.seed import client_for, make_admin, make_course, make_student, make_teacher

pytestmark = pytest.mark.anyio("asyncio")


def _payload(course: dict, student: dict, *, minutes_from_now: int = -5) -> dict:
    when = datetime.now(timezone.utc) + timedelta(minutes=minutes_from_now)
    return {
        "course_id": course["id"],
        "title": "Live Q&A",
        "scheduled_at": when.isoformat(),
        "duration_minutes": 45,
        "student_ids": [student["student"]["id"]],
    }


async def test_teacher_schedules_session_with_room(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        r = await c.post("/api/sessions", json=_payload(course, student))
    assert r.status_code == 201
    session = r.json()["data"]
    assert session["room_name"] == "session-test-1"
    assert session["room_url"] == "https://campus.daily.co/session-test-1"
    assert session["teacher_id"] == teacher["teacher"]["id"]
    assert [s["id"] for s in session["students"]] == [student["student"]["id"]]
    assert len(rooms.created) == 1


async def test_student_cannot_schedule(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(student) as c:
        r = await c.post("/api/sessions", json=_payload(course, student))
    assert r.status_code == 403
    assert rooms.created == []


async def test_teacher_must_own_course(memory_repo, rooms):
    student = make_student(memory_repo)
    course = make_course(memory_repo, make_teacher(memory_repo), students=[student])
    async with client_for(make_teacher(memory_repo)) as c:
        r = await c.post("/api/sessions", json=_payload(course, student))
    assert r.status_code == 403
    assert r.json() == {"error": "forbidden", "detail": "not_course_owner"}
    assert rooms.created == []


async def test_empty_attendees_and_bad_duration_are_rejected(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        body = _payload(course, student)
        body["student_ids"] = []
        r = await c.post("/api/sessions", json=body)
        assert r.status_code == 400
        body = _payload(course, student)
        body["duration_minutes"] = 0
        r = await c.post("/api/sessions", json=body)
        assert r.status_code == 400
        assert r.json()["detail"] == "invalid_duration_minutes"
    assert rooms.created == []


async def test_room_provider_failure_is_502(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    rooms.fail_create = True
    async with client_for(teacher) as c:
        r = await c.post("/api/sessions", json=_payload(course, student))
    assert r.status_code == 502
    assert r.json() == {"error": "bad_gateway", "detail": "video_provider_unavailable"}
    assert memory_repo.list_sessions() == []


async def test_join_returns_owner_and_guest_tokens(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        session = (await c.post("/api/sessions", json=_payload(course, student))).json()["data"]
        r = await c.post("/api/sessions/join", json={"session_id": session["id"]})
    assert r.status_code == 200
    assert r.json()["data"] == {
        "url": f"/sessions/{session['id']}",
        "room_url": session["room_url"],
        "token": "token-session-test-1-owner",
    }
    async with client_for(student) as c:
        r = await c.post("/api/sessions/join", json={"session_id": session["id"]})
    assert r.json()["data"]["token"] == "token-session-test-1-guest"


async def test_join_before_start_is_forbidden(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        session = (await c.post("/api/sessions", json=_payload(course, student, minutes_from_now=60))).json()["data"]
    async with client_for(student) as c:
        r = await c.post("/api/sessions/join", json={"session_id": session["id"]})
    assert r.status_code == 403
    assert r.json()["detail"] == "session_not_started"


async def test_outsider_cannot_join(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        session = (await c.post("/api/sessions", json=_payload(course, student))).json()["data"]
    async with client_for(make_student(memory_repo)) as c:
        r = await c.post("/api/sessions/join", json={"session_id": session["id"]})
    assert r.status_code == 403


async def test_list_is_role_scoped(memory_repo):
    teacher = make_teacher(memory_repo)
    attendee, other = make_student(memory_repo), make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[attendee, other])
    async with client_for(teacher) as c:
        await c.post("/api/sessions", json=_payload(course, attendee))
    async with client_for(attendee) as c:
        mine = (await c.get("/api/sessions")).json()["data"]
    async with client_for(other) as c:
        theirs = (await c.get("/api/sessions")).json()["data"]
    async with client_for(make_admin(memory_repo)) as c:
        everything = (await c.get("/api/sessions")).json()["data"]
    assert len(mine) == 1
    assert theirs == []
    assert len(everything) == 1


async def test_delete_removes_room_best_effort(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        session = (await c.post("/api/sessions", json=_payload(course, student))).json()["data"]
        rooms.fail_delete = True
        r = await c.delete(f"/api/sessions/{session['id']}")
    assert r.status_code == 204
    assert memory_repo.get_session(session["id"]) is None


async def test_cross_origin_write_is_rejected(memory_repo, rooms):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        r = await c.post("/api/sessions", json=_payload(course, student), headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.json() == {"error": "forbidden", "detail": "csrf_violation"}
    assert rooms.created == []


async def test_strict_csrf_requires_origin(memory_repo, monkeypatch):
    monkeypatch.setenv("STRICT_CSRF", "true")
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        r = await c.post("/api/sessions", json=_payload(course, student))
        assert r.status_code == 403
        r = await c.post("/api/sessions", json=_payload(course, student), headers={"Origin": "http://test"})
    assert r.status_code == 201


async def test_slow_room_provider_does_not_stall_other_requests(memory_repo):
    class _SlowRooms(FakeRoomProvider):
        def create_room(self, **kwargs) -> dict:
            time.sleep(0.5)
            return super().create_room(**kwargs)

    repos.set_room_provider(_SlowRooms())
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    gaps = []
    done = anyio.Event()

    async def _ticker():
        last = time.perf_counter()
        while not done.is_set():
            await anyio.sleep(0.02)
            now = time.perf_counter()
            gaps.append(now - last)
            last = now

    async with anyio.create_task_group() as tg:
        tg.start_soon(_ticker)
        async with client_for(teacher) as c:
            r = await c.post("/api/sessions", json=_payload(course, student))
        done.set()
    assert r.status_code == 201
    assert gaps and max(gaps) < 0.3

"""
Session scheduling provisions a video room first and compensates on failure.

Order: room -> session row -> attendee links. A failed row insert deletes the
room; a failed attendee insert deletes the row and then the room.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from identity_access.callers import caller_from_user
from teaching.services.sessions import ROOM_EXPIRY_AFTER_START, RoomProvisioningError, SessionScheduler
from utils.fakes import FakeRoomProvider
from utils.seed import make_admin, make_course, make_student, make_teacher

START = "2030-05-01T09:00:00Z"


def _caller(repo, person):
    user = person["user"]
    return caller_from_user({"sub": user["id"], "roles": [user["role"]], "name": user["name"]}, repo)


@pytest.fixture
def world(memory_repo):
    teacher = make_teacher(memory_repo, name="Ada Teacher")
    student = make_student(memory_repo, name="Sam Student")
    course = make_course(memory_repo, teacher, title="Algebra", students=[student])
    rooms = FakeRoomProvider()
    return {
        "repo": memory_repo,
        "teacher": teacher,
        "student": student,
        "course": course,
        "rooms": rooms,
        "scheduler": SessionScheduler(memory_repo, rooms, memory_repo),
    }


def _create(world, **overrides):
    payload = {
        "course_id": world["course"]["id"],
        "title": "Live lesson",
        "scheduled_at": START,
        "duration_minutes": 45,
        "student_ids": [world["student"]["student"]["id"]],
    }
    payload.update(overrides)
    return world["scheduler"].create(_caller(world["repo"], world["teacher"]), **payload)


def test_create_provisions_room_and_links_attendees(world):
    session = _create(world)

    assert session["room_name"] == "session-test-1"
    assert session["room_url"] == "https://campus.daily.co/session-test-1"
    assert session["status"] == "upcoming"
    assert [s["id"] for s in session["students"]] == [world["student"]["student"]["id"]]
    expected_exp = int((datetime(2030, 5, 1, 9, tzinfo=timezone.utc) + ROOM_EXPIRY_AFTER_START).timestamp())
    assert world["rooms"].created[0]["exp"] == expected_exp


def test_room_failure_persists_nothing(world):
    world["rooms"].fail_create = True
    with pytest.raises(RoomProvisioningError):
        _create(world)
    assert world["repo"].list_sessions() == []


def test_session_insert_failure_deletes_room(world, monkeypatch):
    def _boom(**_):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(world["repo"], "create_session", _boom)
    with pytest.raises(RuntimeError):
        _create(world)
    assert world["rooms"].deleted == ["session-test-1"]


def test_attendee_failure_deletes_session_and_room(world, monkeypatch):
    def _boom(session_id, student_ids):
        raise RuntimeError("link failed")

    monkeypatch.setattr(world["repo"], "add_session_students", _boom)
    with pytest.raises(RuntimeError):
        _create(world)
    assert world["repo"].list_sessions() == []
    assert world["rooms"].deleted == ["session-test-1"]


def test_validation_happens_before_room_creation(world):
    with pytest.raises(ValueError) as exc:
        _create(world, student_ids=[])
    assert str(exc.value) == "invalid_student_ids"
    with pytest.raises(ValueError) as exc:
        _create(world, duration_minutes=0)
    assert str(exc.value) == "invalid_duration_minutes"
    assert world["rooms"].created == []


def test_non_owning_teacher_and_student_are_rejected(world):
    other = make_teacher(world["repo"])
    with pytest.raises(PermissionError) as exc:
        world["scheduler"].create(
            _caller(world["repo"], other),
            course_id=world["course"]["id"],
            scheduled_at=START,
            duration_minutes=30,
            student_ids=[world["student"]["student"]["id"]],
        )
    assert str(exc.value) == "not_course_owner"
    with pytest.raises(PermissionError):
        world["scheduler"].create(
            _caller(world["repo"], world["student"]),
            course_id=world["course"]["id"],
            scheduled_at=START,
            duration_minutes=30,
            student_ids=[world["student"]["student"]["id"]],
        )


def test_admin_schedules_on_behalf_of_course_teacher(world):
    admin = make_admin(world["repo"])
    session = world["scheduler"].create(
        _caller(world["repo"], admin),
        course_id=world["course"]["id"],
        scheduled_at=START,
        duration_minutes=30,
        student_ids=[world["student"]["student"]["id"]],
    )
    assert session["teacher_id"] == world["teacher"]["teacher"]["id"]
    assert session["title"] == "Algebra"


def test_join_before_start_is_rejected_and_after_start_returns_token(world):
    session = _create(world)
    scheduler = world["scheduler"]
    before = datetime(2030, 5, 1, 8, 59, tzinfo=timezone.utc)
    after = before + timedelta(minutes=5)

    with pytest.raises(PermissionError) as exc:
        scheduler.join(_caller(world["repo"], world["student"]), session["id"], now=before)
    assert str(exc.value) == "session_not_started"

    joined = scheduler.join(_caller(world["repo"], world["student"]), session["id"], now=after)
    assert joined["url"] == f"/sessions/{session['id']}"
    assert joined["room_url"] == session["room_url"]
    assert joined["token"].endswith("guest")

    owner = scheduler.join(_caller(world["repo"], world["teacher"]), session["id"], now=after)
    assert owner["token"].endswith("owner")


def test_join_without_token_when_provider_fails(world):
    session = _create(world)
    world["rooms"].fail_token = True
    joined = world["scheduler"].join(
        _caller(world["repo"], world["teacher"]), session["id"], now=datetime(2031, 1, 1, tzinfo=timezone.utc)
    )
    assert "token" not in joined


def test_unrelated_student_cannot_join(world):
    session = _create(world)
    outsider = make_student(world["repo"])
    with pytest.raises(PermissionError):
        world["scheduler"].join(
            _caller(world["repo"], outsider), session["id"], now=datetime(2031, 1, 1, tzinfo=timezone.utc)
        )


def test_delete_removes_row_even_when_room_cleanup_fails(world):
    session = _create(world)
    world["rooms"].fail_delete = True
    world["scheduler"].delete(_caller(world["repo"], world["teacher"]), session["id"])
    assert world["repo"].get_session(session["id"]) is None

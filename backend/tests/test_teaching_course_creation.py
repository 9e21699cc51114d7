"""
Course creation expands the curriculum into sessions, assignments and quizzes.

The course insert is fatal; every later step is best-effort and reported in
`CourseCreationResult.failures` instead of aborting the request.
"""
from __future__ import annotations

import logging

import pytest

from identity_access.callers import caller_from_user
from teaching.services.courses import CourseService
from utils.fakes import FakeRoomProvider
from utils.seed import make_admin, make_course, make_student, make_teacher


def _caller(repo, person):
    user = person["user"]
    return caller_from_user({"sub": user["id"], "roles": [user["role"]], "name": user["name"]}, repo)


def _service(repo):
    return CourseService(repo, repo, FakeRoomProvider())


CURRICULUM = [
    {
        "title": "Foundations",
        "lessons": [
            {"type": "lecture", "title": "Kick-off", "scheduled_at": "2024-01-02T09:00:00Z"},
            {"type": "assignment", "title": None, "scheduled_at": "2024-01-05T09:00:00Z"},
            {"type": "quiz", "title": "Warm-up quiz"},
        ],
    }
]


def test_teacher_creates_course_with_curriculum(memory_repo):
    teacher = make_teacher(memory_repo)
    s1, s2 = make_student(memory_repo), make_student(memory_repo)
    result = _service(memory_repo).create(
        _caller(memory_repo, teacher),
        title="  Physics  ",
        student_ids=[s1["student"]["id"], s2["student"]["id"]],
        curriculum=CURRICULUM,
        tenure_start="2024-01-01",
    )

    assert result.failures == []
    assert result.course["title"] == "Physics"
    assert result.course["teacher_id"] == teacher["teacher"]["id"]
    assert result.course["student_count"] == 2
    assert [s["title"] for s in result.sessions] == ["Kick-off"]
    assert result.sessions[0]["duration_minutes"] == 60
    # Untitled lessons fall back to "<Kind> from <section>".
    assert result.assignments[0]["title"] == "Assignment from Foundations"
    assert result.assignments[0]["total_marks"] == 100
    assert result.quizzes[0]["title"] == "Warm-up quiz"
    assert memory_repo.is_assignment_student(result.assignments[0]["id"], s1["student"]["id"])


def test_assignment_student_link_failure_is_reported_not_raised(memory_repo, monkeypatch, caplog):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)

    def _boom(assignment_id, student_ids):
        raise RuntimeError("link insert failed")

    monkeypatch.setattr(memory_repo, "add_assignment_students", _boom)
    with caplog.at_level(logging.WARNING, logger="campus.teaching"):
        result = _service(memory_repo).create(
            _caller(memory_repo, teacher),
            title="Chemistry",
            student_ids=[student["student"]["id"]],
            curriculum=CURRICULUM,
        )

    assert memory_repo.get_course(result.course_id) is not None
    assert len(result.assignments) == 1
    assert len(result.quizzes) == 1
    assert [f["step"] for f in result.failures] == ["assign_assignment_students"]
    assert result.failures[0]["error"] == "RuntimeError"
    # Quiz links still happen after the assignment link failed.
    assert memory_repo.is_quiz_student(result.quizzes[0]["id"], student["student"]["id"])
    assert any("assign_assignment_students failed" in r.getMessage() for r in caplog.records)


def test_refresh_failure_after_insert_keeps_created_course(memory_repo, monkeypatch):
    teacher = make_teacher(memory_repo)

    def _boom(course_id):
        raise RuntimeError("read replica down")

    monkeypatch.setattr(memory_repo, "get_course", _boom)
    result = _service(memory_repo).create(_caller(memory_repo, teacher), title="Music", curriculum=CURRICULUM)

    assert result.course["title"] == "Music"
    assert memory_repo.count_courses() == 1
    assert len(result.sessions) == 1
    assert [f["step"] for f in result.failures] == ["refresh_course"]


def test_invalid_lesson_date_skips_only_that_lesson(memory_repo):
    teacher = make_teacher(memory_repo)
    curriculum = [{"title": "Week 1", "lessons": [{"type": "lecture", "scheduled_at": "soon"}, {"type": "quiz"}]}]
    result = _service(memory_repo).create(_caller(memory_repo, teacher), title="Biology", curriculum=curriculum)
    assert result.sessions == []
    assert [q["title"] for q in result.quizzes] == ["Quiz from Week 1"]
    assert result.failures[0]["step"] == "create_lecture"


def test_unknown_lesson_type_is_rejected_before_insert(memory_repo):
    teacher = make_teacher(memory_repo)
    with pytest.raises(ValueError) as exc:
        _service(memory_repo).create(
            _caller(memory_repo, teacher), title="History", curriculum=[{"lessons": [{"type": "field_trip"}]}]
        )
    assert str(exc.value) == "invalid_lesson_type"
    assert memory_repo.count_courses() == 0


def test_admin_must_name_an_existing_teacher(memory_repo):
    admin = make_admin(memory_repo)
    teacher = make_teacher(memory_repo)
    service = _service(memory_repo)
    with pytest.raises(ValueError):
        service.create(_caller(memory_repo, admin), title="Art")
    result = service.create(_caller(memory_repo, admin), title="Art", teacher_id=teacher["teacher"]["id"])
    assert result.course["teacher"]["id"] == teacher["teacher"]["id"]


def test_student_cannot_create_course(memory_repo):
    student = make_student(memory_repo)
    with pytest.raises(PermissionError):
        _service(memory_repo).create(_caller(memory_repo, student), title="Nope")


def test_tenure_end_before_start_is_invalid(memory_repo):
    teacher = make_teacher(memory_repo)
    with pytest.raises(ValueError) as exc:
        _service(memory_repo).create(
            _caller(memory_repo, teacher), title="Geo", tenure_start="2024-02-01", tenure_end="2024-01-01"
        )
    assert str(exc.value) == "invalid_tenure_end"


def test_delete_course_removes_rooms_best_effort(memory_repo):
    admin = make_admin(memory_repo)
    teacher = make_teacher(memory_repo)
    course = make_course(memory_repo, teacher)
    memory_repo.create_session(
        course_id=course["id"],
        teacher_id=teacher["teacher"]["id"],
        title="Live",
        scheduled_at="2024-01-01T09:00:00Z",
        duration_minutes=30,
        room_name="session-1",
        room_url="https://campus.daily.co/session-1",
    )
    rooms = FakeRoomProvider()
    rooms.fail_delete = True
    CourseService(memory_repo, memory_repo, rooms).delete(_caller(memory_repo, admin), course["id"])
    assert memory_repo.get_course(course["id"]) is None

"""
Coursework API: assignments (create, submit, grade) and quizzes (auto-scored
submissions, hidden answer keys, score overrides).
"""
from __future__ import annotations

import pytest

from utils.seed import client_for, make_admin, make_course, make_student, make_teacher

pytestmark = pytest.mark.anyio("asyncio")


def _setup(repo):
    teacher = make_teacher(repo)
    student = make_student(repo)
    course = make_course(repo, teacher, students=[student])
    return teacher, student, course


async def _create_assignment(client, course, student, **extra):
    body = {
        "course_id": course["id"],
        "title": "Essay",
        "total_marks": 20,
        "student_ids": [student["student"]["id"]],
        **extra,
    }
    return await client.post("/api/assignments", json=body)


async def test_assignment_submit_and_grade(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(teacher) as c:
        r = await _create_assignment(
            c, course, student, attachments=[{"file_path": "https://files.test/brief.pdf", "file_name": "brief.pdf"}]
        )
        assert r.status_code == 201
        assignment = r.json()["data"]
        assert assignment["created_by"] == teacher["teacher"]["id"]
        assert [a["file_name"] for a in assignment["attachments"]] == ["brief.pdf"]

    async with client_for(student) as c:
        r = await c.post(f"/api/assignments/{assignment['id']}/submit", json={"content": "first draft"})
        assert r.status_code == 201
        first = r.json()["data"]
        r = await c.post(f"/api/assignments/{assignment['id']}/submit", json={"content": "final"})
        second = r.json()["data"]
    assert first["id"] == second["id"]
    assert second["content"] == "final"

    async with client_for(teacher) as c:
        r = await c.post(f"/api/submissions/{second['id']}/grade", json={"grade": 25})
        assert r.status_code == 400
        assert r.json()["detail"] == "invalid_grade"
        r = await c.post(f"/api/submissions/{second['id']}/grade", json={"grade": 17.5})
    assert r.status_code == 200
    graded = r.json()["data"]
    assert graded["grade"] == 17.5
    assert graded["status"] == "graded"


async def test_assignment_requires_students(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(teacher) as c:
        r = await c.post("/api/assignments", json={"course_id": course["id"], "title": "Empty", "student_ids": []})
    assert r.status_code == 400


async def test_students_cannot_author_coursework(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(student) as c:
        r = await _create_assignment(c, course, student)
        assert r.status_code == 403
        r = await c.post("/api/quizzes", json={"course_id": course["id"], "title": "Q", "student_ids": [student["student"]["id"]]})
    assert r.status_code == 403


async def test_unassigned_student_cannot_submit(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(teacher) as c:
        assignment = (await _create_assignment(c, course, student)).json()["data"]
    async with client_for(make_student(memory_repo)) as c:
        r = await c.post(f"/api/assignments/{assignment['id']}/submit", json={"content": "sneaky"})
    assert r.status_code == 403
    assert r.json()["detail"] == "not_assigned"


async def test_other_teacher_cannot_grade(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(teacher) as c:
        assignment = (await _create_assignment(c, course, student)).json()["data"]
    async with client_for(student) as c:
        submission = (await c.post(f"/api/assignments/{assignment['id']}/submit", json={"content": "x"})).json()["data"]
    async with client_for(make_teacher(memory_repo)) as c:
        r = await c.post(f"/api/submissions/{submission['id']}/grade", json={"grade": 10})
    assert r.status_code == 403


async def test_students_only_see_own_submissions(memory_repo):
    teacher = make_teacher(memory_repo)
    alice, bob = make_student(memory_repo), make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[alice, bob])
    async with client_for(teacher) as c:
        r = await c.post(
            "/api/assignments",
            json={"course_id": course["id"], "title": "Lab", "student_ids": [alice["student"]["id"], bob["student"]["id"]]},
        )
        assignment = r.json()["data"]
    for person in (alice, bob):
        async with client_for(person) as c:
            await c.post(f"/api/assignments/{assignment['id']}/submit", json={"content": person["user"]["name"]})

    async with client_for(alice) as c:
        rows = (await c.get("/api/assignments")).json()["data"]
    assert [s["student_id"] for s in rows[0]["submissions"]] == [alice["student"]["id"]]
    async with client_for(teacher) as c:
        rows = (await c.get("/api/assignments")).json()["data"]
    assert len(rows[0]["submissions"]) == 2


async def test_quiz_submission_is_scored_and_key_hidden(memory_repo):
    teacher, student, course = _setup(memory_repo)
    quiz_body = {
        "course_id": course["id"],
        "title": "Checkpoint",
        "total_marks": 10,
        "student_ids": [student["student"]["id"]],
        "questions": [
            {"question_text": "2 + 2?", "options": ["3", "4"], "correct_answer": "4", "points": 4},
            {"question_text": "Capital of France?", "question_type": "short_answer", "correct_answer": "Paris", "points": 6},
        ],
    }
    async with client_for(teacher) as c:
        r = await c.post("/api/quizzes", json=quiz_body)
        assert r.status_code == 201
        quiz = r.json()["data"]
    q1, q2 = quiz["questions"]
    assert q1["correct_answer"] == "4"

    async with client_for(student) as c:
        listed = (await c.get("/api/quizzes")).json()["data"]
        assert all("correct_answer" not in q for q in listed[0]["questions"])
        r = await c.post(f"/api/quizzes/{quiz['id']}/submit", json={"answers": {q1["id"]: "4", q2["id"]: " paris "}})
    assert r.status_code == 201
    submission = r.json()["data"]
    assert submission["score"] == 10

    async with client_for(teacher) as c:
        r = await c.patch(f"/api/quizzes/submissions/{submission['id']}", json={"score": 11})
        assert r.status_code == 400
        assert r.json()["detail"] == "invalid_score"
        r = await c.patch(f"/api/quizzes/submissions/{submission['id']}", json={"score": 7})
    assert r.json()["data"]["score"] == 7


async def test_quiz_rejects_answer_outside_options(memory_repo):
    teacher, student, course = _setup(memory_repo)
    body = {
        "course_id": course["id"],
        "title": "Broken",
        "student_ids": [student["student"]["id"]],
        "questions": [{"question_text": "Pick", "options": ["a", "b"], "correct_answer": "c"}],
    }
    async with client_for(teacher) as c:
        r = await c.post("/api/quizzes", json=body)
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_correct_answer"


async def test_admin_deletes_coursework(memory_repo):
    teacher, student, course = _setup(memory_repo)
    async with client_for(teacher) as c:
        assignment = (await _create_assignment(c, course, student)).json()["data"]
    async with client_for(student) as c:
        r = await c.delete(f"/api/assignments/{assignment['id']}")
        assert r.status_code == 403
    async with client_for(make_admin(memory_repo)) as c:
        r = await c.delete(f"/api/assignments/{assignment['id']}")
        assert r.status_code == 204
        r = await c.delete(f"/api/assignments/{assignment['id']}")
    assert r.status_code == 404

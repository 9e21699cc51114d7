"""
People directory API: admin CRUD for students and teachers, teacher read
access to students, account rollback and admin statistics.
"""
from __future__ import annotations

import pytest

from utils.seed import client_for, make_admin, make_course, make_student, make_teacher

pytestmark = pytest.mark.anyio("asyncio")


async def test_admin_creates_updates_and_deletes_student(memory_repo):
    admin = make_admin(memory_repo)
    async with client_for(admin) as c:
        r = await c.post(
            "/api/students",
            json={
                "email": "Lina@School.test",
                "password": "student-pass",
                "name": "Lina",
                "student_number": "S-100",
                "fee_status": "Paid",
                "join_date": "2024-09-01",
            },
        )
        assert r.status_code == 201
        student = r.json()["data"]
        assert student["email"] == "lina@school.test"
        assert student["fee_status"] == "paid"
        assert student["join_date"] == "2024-09-01"

        r = await c.patch(f"/api/students/{student['id']}", json={"name": "Lina K.", "fee_status": "partial"})
        assert r.status_code == 200
        assert r.json()["data"]["name"] == "Lina K."
        assert r.json()["data"]["fee_status"] == "partial"

        r = await c.delete(f"/api/students/{student['id']}")
        assert r.status_code == 204
        r = await c.get(f"/api/students/{student['id']}")
    assert r.status_code == 404
    assert memory_repo.get_user_by_email("lina@school.test") is None


async def test_invalid_fee_status_is_rejected(memory_repo):
    async with client_for(make_admin(memory_repo)) as c:
        r = await c.post("/api/students", json={"email": "x@school.test", "password": "student-pass", "fee_status": "free"})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_fee_status"
    assert memory_repo.get_user_by_email("x@school.test") is None


async def test_failed_profile_insert_rolls_back_account(memory_repo, monkeypatch):
    def _boom(user_id, **fields):
        raise RuntimeError("profile insert failed")

    monkeypatch.setattr(memory_repo, "create_teacher_profile", _boom)
    async with client_for(make_admin(memory_repo)) as c:
        r = await c.post("/api/teachers", json={"email": "t@school.test", "password": "teacher-pass", "name": "T"})
    assert r.status_code == 500
    assert r.json() == {"error": "internal_error"}
    assert memory_repo.get_user_by_email("t@school.test") is None


async def test_teacher_reads_students_but_cannot_write(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    async with client_for(teacher) as c:
        r = await c.get("/api/students")
        assert r.status_code == 200
        assert [s["id"] for s in r.json()["data"]] == [student["student"]["id"]]
        r = await c.post("/api/students", json={"email": "n@school.test", "password": "student-pass"})
        assert r.status_code == 403
        r = await c.get("/api/teachers")
    assert r.status_code == 403


async def test_student_cannot_list_people(memory_repo):
    async with client_for(make_student(memory_repo)) as c:
        assert (await c.get("/api/students")).status_code == 403
        assert (await c.get("/api/admin/stats")).status_code == 403


async def test_teacher_crud_and_course_detach(memory_repo):
    admin = make_admin(memory_repo)
    async with client_for(admin) as c:
        r = await c.post(
            "/api/teachers",
            json={"email": "prof@school.test", "password": "teacher-pass", "name": "Prof", "qualification": "PhD"},
        )
        assert r.status_code == 201
        teacher = r.json()["data"]
        assert teacher["qualification"] == "PhD"
        course = memory_repo.create_course(title="Owned", teacher_id=teacher["id"])

        dup = await c.post("/api/teachers", json={"email": "prof@school.test", "password": "teacher-pass"})
        assert dup.json()["detail"] == "email_taken"

        r = await c.delete(f"/api/teachers/{teacher['id']}")
        assert r.status_code == 204
    assert memory_repo.get_course(course["id"])["teacher_id"] is None


async def test_bad_person_id_is_400(memory_repo):
    async with client_for(make_admin(memory_repo)) as c:
        r = await c.patch("/api/students/not-a-uuid", json={"name": "x"})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_id"


async def test_admin_stats_counts(memory_repo):
    admin = make_admin(memory_repo)
    teacher = make_teacher(memory_repo)
    make_student(memory_repo)
    make_student(memory_repo)
    make_course(memory_repo, teacher)
    async with client_for(admin) as c:
        r = await c.get("/api/admin/stats")
    assert r.status_code == 200
    assert r.json()["data"] == {"teachers": 1, "students": 2, "courses": 1}

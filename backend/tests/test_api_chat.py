"""
Chat API: direct and course conversations, partner rules, unread counts.
"""
from __future__ import annotations

import pytest

from utils.seed import client_for, make_admin, make_course, make_student, make_teacher

pytestmark = pytest.mark.anyio("asyncio")


async def test_direct_conversation_is_reused(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        first = await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})
        second = await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})
    assert first.status_code == 201
    conv = first.json()["data"]
    assert conv["type"] == "direct"
    assert [p["id"] for p in conv["participants"]] == [student["user"]["id"]]
    assert second.json()["data"]["id"] == conv["id"]


async def test_partner_rules(memory_repo):
    teacher, stranger = make_teacher(memory_repo), make_teacher(memory_repo)
    admin = make_admin(memory_repo)
    student = make_student(memory_repo)
    make_course(memory_repo, teacher, students=[student])

    async with client_for(student) as c:
        partners = (await c.get("/api/chat/partners")).json()["data"]
        assert {p["id"] for p in partners} == {teacher["user"]["id"], admin["user"]["id"]}
        r = await c.post("/api/chat/conversations", json={"partner_id": stranger["user"]["id"]})
        assert r.status_code == 403
        assert r.json()["detail"] == "partner_not_allowed"
        r = await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})
        assert r.status_code == 400
        assert r.json()["detail"] == "invalid_partner"


async def test_messages_and_unread_counts(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        conv = (await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})).json()["data"]
        for text in ("Hello", "Homework is due Friday"):
            r = await c.post(f"/api/chat/conversations/{conv['id']}/messages", json={"content": text})
            assert r.status_code == 201
        assert (await c.get("/api/chat/unread")).json()["data"] == {"unread": 0}

    async with client_for(student) as c:
        assert (await c.get("/api/chat/unread")).json()["data"] == {"unread": 2}
        listed = (await c.get("/api/chat/conversations")).json()["data"]
        assert listed[0]["unread_count"] == 2
        assert listed[0]["last_message"]["content"] == "Homework is due Friday"
        messages = (await c.get(f"/api/chat/conversations/{conv['id']}/messages")).json()["data"]
        assert [m["content"] for m in messages] == ["Hello", "Homework is due Friday"]
        r = await c.post(f"/api/chat/conversations/{conv['id']}/read")
        assert r.status_code == 200
        assert r.json()["data"]["last_read_at"]
        assert (await c.get("/api/chat/unread")).json()["data"] == {"unread": 0}


async def test_blank_message_is_rejected(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        conv = (await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})).json()["data"]
        r = await c.post(f"/api/chat/conversations/{conv['id']}/messages", json={"content": "   "})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_content"


async def test_course_conversation_follows_enrollment(memory_repo):
    teacher = make_teacher(memory_repo)
    student, outsider = make_student(memory_repo), make_student(memory_repo)
    course = make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        r = await c.post(f"/api/chat/courses/{course['id']}/conversation")
        assert r.status_code == 200
        group = r.json()["data"]
        again = (await c.post(f"/api/chat/courses/{course['id']}/conversation")).json()["data"]
        await c.post(f"/api/chat/conversations/{group['id']}/messages", json={"content": "Welcome all"})
    assert group["type"] == "group"
    assert again["id"] == group["id"]

    async with client_for(student) as c:
        listed = (await c.get("/api/chat/conversations")).json()["data"]
        assert [x["id"] for x in listed] == [group["id"]]
        r = await c.post(f"/api/chat/conversations/{group['id']}/messages", json={"content": "Thanks!"})
        assert r.status_code == 201

    async with client_for(outsider) as c:
        r = await c.get(f"/api/chat/conversations/{group['id']}/messages")
        assert r.status_code == 403
        assert (await c.get("/api/chat/conversations")).json()["data"] == []


async def test_outsider_cannot_read_direct_conversation(memory_repo):
    teacher = make_teacher(memory_repo)
    student = make_student(memory_repo)
    make_course(memory_repo, teacher, students=[student])
    async with client_for(teacher) as c:
        conv = (await c.post("/api/chat/conversations", json={"partner_id": student["user"]["id"]})).json()["data"]
    async with client_for(make_student(memory_repo)) as c:
        r = await c.get(f"/api/chat/conversations/{conv['id']}/messages")
    assert r.status_code == 403

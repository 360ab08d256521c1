"""
tests/test_moderation.py
Tests for abuse reports and the moderator console.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.messaging.conversations import get_or_create_conversation, post_message
from shared.models.models import ModerationAuditLog, Notification, NotificationType, User
from tests.conftest import auth_headers, create_user


async def seed_conversation(db: AsyncSession, a: User, b: User):
    conversation, _ = await get_or_create_conversation(db, a.id, b.id)
    message = await post_message(db, conversation, b.id, "Message déplacé")
    await db.commit()
    return conversation, message


async def file_report(client: AsyncClient, reporter: User, **target):
    body = {"reason": "Harcèlement", "description": "Propos insultants répétés"}
    body.update({k: str(v) for k, v in target.items()})
    return await client.post("/mod/abuse-reports", json=body, headers=auth_headers(reporter))


# ── Reporting ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_participant_reports_conversation_and_moderators_are_notified(
    client: AsyncClient, db: AsyncSession, student: User, tutor: User, moderator: User
):
    conversation, _ = await seed_conversation(db, student, tutor)

    response = await file_report(client, student, conversation_id=conversation.id)
    assert response.status_code == 201
    assert response.json()["status"] == "OPEN"
    assert response.json()["conversation_id"] == str(conversation.id)

    notified = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == moderator.id,
            Notification.type == NotificationType.ABUSE_REPORT,
        )
    )
    assert notified == 1


@pytest.mark.asyncio
async def test_message_report_is_attached_to_its_conversation(
    client: AsyncClient, db: AsyncSession, student: User, tutor: User
):
    conversation, message = await seed_conversation(db, student, tutor)

    response = await file_report(client, student, message_id=message.id)
    assert response.status_code == 201
    assert response.json()["message_id"] == str(message.id)
    assert response.json()["conversation_id"] == str(conversation.id)


@pytest.mark.asyncio
async def test_report_requires_a_target(client: AsyncClient, student: User):
    response = await file_report(client, student)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_outsider_cannot_report_conversation(
    client: AsyncClient, db: AsyncSession, student: User, tutor: User
):
    conversation, _ = await seed_conversation(db, student, tutor)
    outsider = await create_user(db, first_name="Max")

    response = await file_report(client, outsider, conversation_id=conversation.id)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_report_unknown_conversation(client: AsyncClient, student: User):
    response = await file_report(client, student, conversation_id=uuid.uuid4())
    assert response.status_code == 404


# ── Console ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_console_is_moderator_only(client: AsyncClient, student: User):
    response = await client.get("/mod/reports", headers=auth_headers(student))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_moderator_reviews_report(
    client: AsyncClient, db: AsyncSession, student: User, tutor: User, moderator: User
):
    conversation, _ = await seed_conversation(db, student, tutor)
    report_id = (await file_report(client, student, conversation_id=conversation.id)).json()["id"]
    headers = auth_headers(moderator)

    listing = await client.get("/mod/reports", headers=headers)
    assert listing.status_code == 200
    [report] = listing.json()["reports"]
    assert report["reporter"]["email"] == student.email
    assert {report["conversation"]["participant1"]["id"], report["conversation"]["participant2"]["id"]} == {
        str(student.id), str(tutor.id)
    }

    thread = await client.get(f"/mod/conversations/{conversation.id}", headers=headers)
    assert thread.status_code == 200
    assert [m["content"] for m in thread.json()["messages"]] == ["Message déplacé"]

    updated = await client.patch(f"/mod/reports/{report_id}", json={"status": "CLOSED"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["status"] == "CLOSED"

    open_only = await client.get("/mod/reports", params={"status": "OPEN"}, headers=headers)
    assert open_only.json()["reports"] == []

    actions = (await db.execute(select(ModerationAuditLog.action))).scalars().all()
    assert sorted(actions) == ["UPDATE_REPORT_STATUS", "VIEW_CONVERSATION"]

    logs = await client.get("/mod/audit-logs", headers=headers)
    assert logs.json()["total"] == 2


@pytest.mark.asyncio
async def test_update_unknown_report(client: AsyncClient, moderator: User):
    response = await client.patch(
        f"/mod/reports/{uuid.uuid4()}", json={"status": "REVIEWING"}, headers=auth_headers(moderator)
    )
    assert response.status_code == 404

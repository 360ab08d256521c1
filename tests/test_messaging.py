"""
tests/test_messaging.py
Tests for the conversation endpoints: open, inbox, thread, send, read receipts.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import User
from tests.conftest import auth_headers, create_user


async def open_conversation(client: AsyncClient, user: User, other: User):
    return await client.post(
        "/conversations", json={"participant_id": str(other.id)}, headers=auth_headers(user)
    )


@pytest.mark.asyncio
async def test_open_conversation_then_reuse_from_other_side(
    client: AsyncClient, student: User, tutor: User
):
    created = await open_conversation(client, student, tutor)
    assert created.status_code == 201

    reused = await open_conversation(client, tutor, student)
    assert reused.status_code == 200
    assert reused.json()["id"] == created.json()["id"]


@pytest.mark.asyncio
async def test_open_conversation_with_self(client: AsyncClient, student: User):
    response = await open_conversation(client, student, student)
    assert response.status_code == 400
    assert response.json()["code"] == "SELF_TARGET"


@pytest.mark.asyncio
async def test_send_message_publishes_to_conversation_channel(
    client: AsyncClient, student: User, tutor: User, mock_redis
):
    conversation_id = (await open_conversation(client, student, tutor)).json()["id"]

    response = await client.post(
        f"/conversations/{conversation_id}/messages",
        json={"content": "  <b>Bonjour</b>, tu es dispo lundi ?  "},
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["content"] == "Bonjour, tu es dispo lundi ?"
    assert data["sender"]["id"] == str(student.id)
    assert data["read"] is False

    channel, payload = mock_redis.publish.await_args.args
    assert channel == f"conversation:{conversation_id}"
    assert "message-received" in payload


@pytest.mark.asyncio
async def test_markup_only_message_is_rejected(client: AsyncClient, student: User, tutor: User):
    conversation_id = (await open_conversation(client, student, tutor)).json()["id"]
    response = await client.post(
        f"/conversations/{conversation_id}/messages",
        json={"content": "<script></script>"},
        headers=auth_headers(student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_outsider_cannot_read_thread(
    client: AsyncClient, student: User, tutor: User, db
):
    conversation_id = (await open_conversation(client, student, tutor)).json()["id"]
    outsider = await create_user(db, first_name="Max")

    response = await client.get(
        f"/conversations/{conversation_id}/messages", headers=auth_headers(outsider)
    )
    assert response.status_code == 403

    missing = await client.get(
        f"/conversations/{uuid.uuid4()}/messages", headers=auth_headers(student)
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_inbox_unread_count_and_read_receipts(
    client: AsyncClient, student: User, tutor: User
):
    conversation_id = (await open_conversation(client, student, tutor)).json()["id"]
    for text in ("Salut", "J'ai besoin d'aide en maths"):
        await client.post(
            f"/conversations/{conversation_id}/messages",
            json={"content": text},
            headers=auth_headers(student),
        )

    inbox = await client.get("/conversations", headers=auth_headers(tutor))
    assert inbox.status_code == 200
    [summary] = inbox.json()["conversations"]
    assert summary["participant"]["id"] == str(student.id)
    assert summary["unread_count"] == 2
    assert summary["last_message"]["content"] == "J'ai besoin d'aide en maths"

    # The sender has nothing unread
    own = await client.get("/conversations", headers=auth_headers(student))
    assert own.json()["conversations"][0]["unread_count"] == 0

    read = await client.post(f"/conversations/{conversation_id}/read", headers=auth_headers(tutor))
    assert read.status_code == 200

    inbox = await client.get("/conversations", headers=auth_headers(tutor))
    assert inbox.json()["conversations"][0]["unread_count"] == 0


@pytest.mark.asyncio
async def test_thread_is_chronological(client: AsyncClient, student: User, tutor: User):
    conversation_id = (await open_conversation(client, student, tutor)).json()["id"]
    await client.post(
        f"/conversations/{conversation_id}/messages", json={"content": "Un"}, headers=auth_headers(student)
    )
    await client.post(
        f"/conversations/{conversation_id}/messages", json={"content": "Deux"}, headers=auth_headers(tutor)
    )

    response = await client.get(
        f"/conversations/{conversation_id}/messages", headers=auth_headers(tutor)
    )
    assert [m["content"] for m in response.json()["messages"]] == ["Un", "Deux"]


@pytest.mark.asyncio
async def test_messaging_requires_verified_email(client: AsyncClient, unverified_user: User):
    response = await client.get("/conversations", headers=auth_headers(unverified_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_open_conversation_with_unknown_user(client: AsyncClient, student: User):
    response = await client.post(
        "/conversations", json={"participant_id": str(uuid.uuid4())}, headers=auth_headers(student)
    )
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"

    inbox = await client.get("/conversations", headers=auth_headers(student))
    assert inbox.status_code == 200
    assert inbox.json()["conversations"] == []


@pytest.mark.asyncio
async def test_open_conversation_with_request_of_another_pair(
    client: AsyncClient, db: AsyncSession, student: User, tutor: User
):
    other = await create_user(db, first_name="Max")
    created = await client.post(
        "/requests",
        json={
            "tutor_id": str(tutor.id),
            "subject": "Mathématiques",
            "level": "2nde",
            "slot_id": "Lundi_S3",
            "date": "2026-11-02T15:00:00+00:00",
        },
        headers=auth_headers(other),
    )
    assert created.status_code == 201

    response = await client.post(
        "/conversations",
        json={"participant_id": str(tutor.id), "request_id": created.json()["id"]},
        headers=auth_headers(student),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    unknown = await client.post(
        "/conversations",
        json={"participant_id": str(tutor.id), "request_id": str(uuid.uuid4())},
        headers=auth_headers(student),
    )
    assert unknown.status_code == 404

    inbox = await client.get("/conversations", headers=auth_headers(student))
    assert inbox.json()["conversations"] == []

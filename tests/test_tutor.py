"""
tests/test_tutor.py
Tests for the tutor profile: preferences, opt-in switch, weekly grid, exceptions.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.tutor.preferences import preferences_payload, set_enabled, upsert_preferences
from shared.models.models import ClassLevel, TutorPreference, User
from tests.conftest import auth_headers, create_user


# ── Core ──────────────────────────────────────────────────────

def test_missing_profile_reads_as_disabled():
    assert preferences_payload(None) == {
        "subjects": [],
        "levels": [],
        "available_outside_hours": False,
        "enabled": False,
    }


@pytest.mark.asyncio
async def test_upsert_stores_level_names_and_keeps_switch(db: AsyncSession, student: User):
    prefs = await upsert_preferences(
        db, student.id, ["Mathématiques", "Mathématiques", "SVT"], ["2nde", "1ère"], True
    )
    await db.commit()
    assert prefs.enabled is False
    assert prefs.subjects == ["Mathématiques", "SVT"]
    assert prefs.levels == ["SECONDE", "PREMIERE"]

    await set_enabled(db, student.id, True)
    await upsert_preferences(db, student.id, ["Anglais"], ["Terminale"], False)
    await db.commit()

    stored = (await db.execute(
        select(TutorPreference).where(TutorPreference.user_id == student.id)
    )).scalar_one()
    assert stored.enabled is True
    assert preferences_payload(stored)["levels"] == ["Terminale"]


# ── HTTP ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_preferences_default_profile(client: AsyncClient, student: User):
    response = await client.get("/tutor/preferences", headers=auth_headers(student))
    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert response.json()["subjects"] == []


@pytest.mark.asyncio
async def test_update_preferences(client: AsyncClient, student: User):
    response = await client.put(
        "/tutor/preferences",
        json={"subjects": ["Mathématiques"], "levels": ["2nde"], "available_outside_hours": True},
        headers=auth_headers(student),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["subjects"] == ["Mathématiques"]
    assert data["levels"] == ["2nde"]
    assert data["enabled"] is False


@pytest.mark.asyncio
async def test_update_preferences_rejects_unknown_subject(client: AsyncClient, student: User):
    response = await client.put(
        "/tutor/preferences",
        json={"subjects": ["Astrologie"], "levels": ["2nde"], "available_outside_hours": False},
        headers=auth_headers(student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_toggle_enabled(client: AsyncClient, student: User):
    on = await client.patch("/tutor/enabled", json={"enabled": True}, headers=auth_headers(student))
    assert on.status_code == 200
    assert on.json() == {"enabled": True}

    prefs = await client.get("/tutor/preferences", headers=auth_headers(student))
    assert prefs.json()["enabled"] is True

    me = await client.get("/auth/me", headers=auth_headers(student))
    assert me.json()["is_tutor_enabled"] is True


@pytest.mark.asyncio
async def test_weekly_grid_is_replaced(client: AsyncClient, student: User):
    first = await client.put(
        "/tutor/availability",
        json={"available_slots": ["Mardi_M2", "Lundi_S3", "Lundi_S3"]},
        headers=auth_headers(student),
    )
    assert first.status_code == 200
    assert first.json()["available_slots"] == ["Lundi_S3", "Mardi_M2"]

    second = await client.put(
        "/tutor/availability",
        json={"available_slots": ["Vendredi_M1"]},
        headers=auth_headers(student),
    )
    assert second.json()["available_slots"] == ["Vendredi_M1"]

    current = await client.get("/tutor/availability", headers=auth_headers(student))
    assert current.json()["available_slots"] == ["Vendredi_M1"]


@pytest.mark.asyncio
async def test_weekly_grid_rejects_bad_slot(client: AsyncClient, student: User):
    response = await client.put(
        "/tutor/availability",
        json={"available_slots": ["Samedi_M1"]},
        headers=auth_headers(student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_add_exception(client: AsyncClient, student: User):
    response = await client.post(
        "/tutor/exceptions",
        json={"date": "2026-12-21T00:00:00Z", "is_available": False, "reason": "Vacances"},
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    assert response.json()["reason"] == "Vacances"

    availability = await client.get("/tutor/availability", headers=auth_headers(student))
    assert len(availability.json()["exceptions"]) == 1


@pytest.mark.asyncio
async def test_enabled_tutor_becomes_matchable(client: AsyncClient, student: User, db: AsyncSession):
    helper = await create_user(db, first_name="Sami", class_level=ClassLevel.TERMINALE)
    headers = auth_headers(helper)
    await client.put(
        "/tutor/preferences",
        json={"subjects": ["Anglais"], "levels": ["2nde", "Terminale"], "available_outside_hours": False},
        headers=headers,
    )
    await client.put("/tutor/availability", json={"available_slots": ["Jeudi_S1"]}, headers=headers)

    params = {"subject": "Anglais", "level": "2nde", "slot_id": "Jeudi_S1"}
    before = await client.get("/match", params=params, headers=auth_headers(student))
    assert before.json()["tutors"] == []

    await client.patch("/tutor/enabled", json={"enabled": True}, headers=headers)
    after = await client.get("/match", params=params, headers=auth_headers(student))
    assert [t["id"] for t in after.json()["tutors"]] == [str(helper.id)]

"""
services/tutor/preferences.py
Opt-in tutoring profile. The row is created on first write; until then the
user counts as disabled with no subjects and no levels.
"""

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Subject, TutorPreference
from shared.utils.levels import level_label, parse_class_level

logger = logging.getLogger(__name__)


def _dedupe(values: Iterable[str]) -> list:
    return list(dict.fromkeys(values))


async def get_preferences(db: AsyncSession, user_id: uuid.UUID) -> Optional[TutorPreference]:
    result = await db.execute(select(TutorPreference).where(TutorPreference.user_id == user_id))
    return result.scalar_one_or_none()


async def upsert_preferences(
    db: AsyncSession,
    user_id: uuid.UUID,
    subjects: Iterable,
    levels: Iterable,
    available_outside_hours: bool,
) -> TutorPreference:
    """
    Replace subjects, levels and the outside-hours flag.
    Never touches `enabled`; a profile created here starts disabled.
    Levels are stored by name (SECONDE, PREMIERE, TERMINALE).
    """
    prefs = await get_preferences(db, user_id)
    if prefs is None:
        prefs = TutorPreference(user_id=user_id, enabled=False)
        db.add(prefs)

    prefs.subjects = _dedupe(Subject(s).value for s in subjects)
    prefs.levels = _dedupe(parse_class_level(l).value for l in levels)
    prefs.available_outside_hours = available_outside_hours
    await db.flush()
    return prefs


async def set_enabled(db: AsyncSession, user_id: uuid.UUID, enabled: bool) -> TutorPreference:
    prefs = await get_preferences(db, user_id)
    if prefs is None:
        prefs = TutorPreference(
            user_id=user_id, subjects=[], levels=[], available_outside_hours=False
        )
        db.add(prefs)
    prefs.enabled = enabled
    await db.flush()
    logger.info(f"Tutoring {'enabled' if enabled else 'disabled'} for user {user_id}")
    return prefs


def preferences_payload(prefs: Optional[TutorPreference]) -> dict:
    """Wire view of a profile, with levels as labels. None reads as the empty profile."""
    if prefs is None:
        return {"subjects": [], "levels": [], "available_outside_hours": False, "enabled": False}
    return {
        "subjects": list(prefs.subjects or []),
        "levels": [level_label(l) for l in prefs.levels or []],
        "available_outside_hours": prefs.available_outside_hours,
        "enabled": prefs.enabled,
    }

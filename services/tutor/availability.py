"""
services/tutor/availability.py
Weekly availability grid and per-date exceptions.
"""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AvailabilityException, WeeklyAvailabilitySlot
from shared.utils.slots import DAYS, TIME_CODES, format_slot_id, normalize_slot_ids, parse_slot_id


def _grid_order(slot_id: str) -> tuple:
    day, time_code = parse_slot_id(slot_id)
    return DAYS.index(day.value), TIME_CODES.index(time_code.value)


async def get_weekly_slots(db: AsyncSession, user_id: uuid.UUID) -> List[str]:
    """The user's slot ids, Monday morning first."""
    result = await db.execute(
        select(WeeklyAvailabilitySlot).where(WeeklyAvailabilitySlot.user_id == user_id)
    )
    slot_ids = [format_slot_id(s.day, s.time_code) for s in result.scalars()]
    return sorted(slot_ids, key=_grid_order)


async def replace_weekly_slots(
    db: AsyncSession, user_id: uuid.UUID, slot_ids: Iterable[str]
) -> List[str]:
    """
    Swap the whole grid for a new set in the caller's transaction.
    Duplicates collapse; an empty set clears the grid.
    """
    normalized = normalize_slot_ids(slot_ids)

    await db.execute(
        delete(WeeklyAvailabilitySlot).where(WeeklyAvailabilitySlot.user_id == user_id)
    )
    for slot_id in normalized:
        day, time_code = parse_slot_id(slot_id)
        db.add(WeeklyAvailabilitySlot(user_id=user_id, day=day, time_code=time_code))
    await db.flush()

    return sorted(normalized, key=_grid_order)


async def list_exceptions(db: AsyncSession, user_id: uuid.UUID) -> List[AvailabilityException]:
    result = await db.execute(
        select(AvailabilityException)
        .where(AvailabilityException.user_id == user_id)
        .order_by(AvailabilityException.date)
    )
    return list(result.scalars())


async def add_exception(
    db: AsyncSession,
    user_id: uuid.UUID,
    date: datetime,
    is_available: bool,
    reason: Optional[str] = None,
) -> AvailabilityException:
    exception = AvailabilityException(
        user_id=user_id,
        date=date,
        is_available=is_available,
        reason=reason,
    )
    db.add(exception)
    await db.flush()
    return exception

"""
services/tutor/router.py
Tutor profile: teaching preferences, opt-in switch, weekly availability and exceptions.
All endpoints act on the authenticated, verified user.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.tutor.availability import (
    add_exception,
    get_weekly_slots,
    list_exceptions,
    replace_weekly_slots,
)
from services.tutor.preferences import (
    get_preferences,
    preferences_payload,
    set_enabled,
    upsert_preferences,
)
from shared.middleware.auth import require_verified
from shared.models.models import User
from shared.schemas.schemas import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionResponse,
    AvailabilityResponse,
    TutorEnabledResponse,
    TutorEnabledUpdate,
    TutorPreferencesResponse,
    TutorPreferencesUpdate,
    WeeklyAvailabilityUpdate,
)

router = APIRouter(prefix="/tutor", tags=["Tutor Profile"])


# ── Preferences ───────────────────────────────────────────────

@router.get("/preferences", response_model=TutorPreferencesResponse)
async def get_my_preferences(
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    prefs = await get_preferences(db, current_user.id)
    return preferences_payload(prefs)


@router.put("/preferences", response_model=TutorPreferencesResponse)
async def update_my_preferences(
    data: TutorPreferencesUpdate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Replace subjects and levels. The opt-in switch is left as it is."""
    prefs = await upsert_preferences(
        db,
        current_user.id,
        subjects=data.subjects,
        levels=data.levels,
        available_outside_hours=data.available_outside_hours,
    )
    await db.commit()
    return preferences_payload(prefs)


@router.patch("/enabled", response_model=TutorEnabledResponse)
async def update_enabled(
    data: TutorEnabledUpdate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    prefs = await set_enabled(db, current_user.id, data.enabled)
    await db.commit()
    return TutorEnabledResponse(enabled=prefs.enabled)


# ── Availability ──────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityResponse)
async def get_my_availability(
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    return AvailabilityResponse(
        available_slots=await get_weekly_slots(db, current_user.id),
        exceptions=[
            AvailabilityExceptionResponse.model_validate(e)
            for e in await list_exceptions(db, current_user.id)
        ],
    )


@router.put("/availability", response_model=AvailabilityResponse)
async def update_my_availability(
    data: WeeklyAvailabilityUpdate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Replace the whole weekly grid. Slot ids look like "Lundi_S3"."""
    slots = await replace_weekly_slots(db, current_user.id, data.available_slots)
    exceptions = await list_exceptions(db, current_user.id)
    await db.commit()
    return AvailabilityResponse(
        available_slots=slots,
        exceptions=[AvailabilityExceptionResponse.model_validate(e) for e in exceptions],
    )


@router.post(
    "/exceptions",
    response_model=AvailabilityExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_exception(
    data: AvailabilityExceptionCreate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    exception = await add_exception(
        db,
        current_user.id,
        date=data.date,
        is_available=data.is_available,
        reason=data.reason,
    )
    await db.commit()
    return AvailabilityExceptionResponse.model_validate(exception)

"""
services/matching/router.py
Tutor matching: eligibility search, direct requests, broadcast calls, status updates.
"""

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.matching.eligibility import MatchQuery, find_eligible_tutors
from services.matching.lifecycle import (
    create_broadcast_call,
    create_direct_request,
    list_requests,
    update_request_status,
)
from services.notification.sink import NotificationSink, get_notifier
from shared.middleware.auth import require_verified
from shared.models.models import Subject, User
from shared.schemas.schemas import (
    BroadcastCallCreate,
    BroadcastCallResponse,
    LevelLabel,
    MatchResponse,
    RequestStatusResponse,
    RequestStatusUpdate,
    TutoringRequestCreate,
    TutoringRequestListResponse,
    TutoringRequestResponse,
    TutorSummary,
)
from shared.utils.levels import parse_class_level
from shared.utils.slots import SLOT_ID_PATTERN

router = APIRouter(tags=["Matching"])


# ── Eligibility ───────────────────────────────────────────────

@router.get("/match", response_model=MatchResponse)
async def match_tutors(
    subject: Subject = Query(...),
    level: LevelLabel = Query(...),
    slot_id: str = Query(..., pattern=SLOT_ID_PATTERN, description='e.g. "Lundi_S3"'),
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Tutors able to help with a subject at a level in a weekly slot. Empty list if none."""
    query = MatchQuery(subject=subject.value, level=parse_class_level(level), slot_id=slot_id)
    tutors = await find_eligible_tutors(db, query, current_user.id)
    return MatchResponse(tutors=[TutorSummary.model_validate(t) for t in tutors])


# ── Requests ──────────────────────────────────────────────────

@router.post(
    "/requests",
    response_model=TutoringRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_request(
    data: TutoringRequestCreate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    request = await create_direct_request(
        db,
        notifier,
        student_id=current_user.id,
        tutor_id=data.tutor_id,
        subject=data.subject,
        level=data.level,
        slot_id=data.slot_id,
        date=data.date,
    )
    await db.commit()
    await notifier.publish_pending()
    return TutoringRequestResponse.model_validate(request)


@router.get("/requests", response_model=TutoringRequestListResponse)
async def get_my_requests(
    mode: Literal["tutore", "tutorant"] = Query(
        ..., description="tutore: sent as a student, tutorant: received as a tutor"
    ),
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    requests = await list_requests(db, current_user.id, mode)
    return TutoringRequestListResponse(
        requests=[TutoringRequestResponse.model_validate(r) for r in requests]
    )


@router.patch("/requests/{request_id}/status", response_model=RequestStatusResponse)
async def change_request_status(
    request_id: UUID,
    data: RequestStatusUpdate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Only the tutor a request is addressed to may accept, reject or close it."""
    request = await update_request_status(
        db, notifier, actor_id=current_user.id, request_id=request_id, new_status=data.status
    )
    await db.commit()
    await notifier.publish_pending()
    return RequestStatusResponse(
        id=request.id, status=request.status, conversation_id=request.conversation_id
    )


# ── Broadcast ─────────────────────────────────────────────────

@router.post("/calls", response_model=BroadcastCallResponse)
async def broadcast_call(
    data: BroadcastCallCreate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """Send the request to every eligible tutor at once. 404 when nobody matches."""
    result = await create_broadcast_call(
        db,
        notifier,
        student_id=current_user.id,
        subject=data.subject,
        level=data.level,
        slot_id=data.slot_id,
        date=data.date,
    )
    await db.commit()
    await notifier.publish_pending()
    return BroadcastCallResponse(
        message=f"Appel envoyé à {result.count} tuteurs",
        count=result.count,
        notified_tutor_ids=result.notified_tutor_ids,
    )

"""
services/matching/lifecycle.py
Tutoring request lifecycle: direct requests, broadcast calls, status transitions.
States: PENDING → ACCEPTED | REJECTED, ACCEPTED → HONORED | CANCELLED

Every operation works on the caller's session and only flushes; the router
commits once and then publishes the notifier's queued realtime events.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from services.matching.eligibility import MatchQuery, find_eligible_tutors
from services.messaging.conversations import get_or_create_conversation
from services.notification.sink import NotificationSink
from shared.models.models import (
    NotificationType,
    RequestStatus,
    Subject,
    TutoringRequest,
    TutoringRequestAuditLog,
    User,
    UserRole,
)
from shared.utils.errors import ForbiddenError, NoEligibleTutorError, NotFoundError, SelfTargetError
from shared.utils.levels import parse_class_level
from shared.utils.slots import format_slot_id, parse_slot_id

logger = logging.getLogger(__name__)

REQUEST_MODES = ("tutore", "tutorant")


@dataclass
class BroadcastResult:
    count: int
    notified_tutor_ids: List[uuid.UUID]
    requests: List[TutoringRequest] = field(default_factory=list)


# ── Helpers ───────────────────────────────────────────────────

async def _get_user_or_404(db: AsyncSession, user_id: uuid.UUID, detail: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError(detail)
    return user


def _log_status_change(
    db: AsyncSession,
    request: TutoringRequest,
    from_status: Optional[RequestStatus],
    to_status: RequestStatus,
    changed_by_id: uuid.UUID,
) -> None:
    """Append an immutable audit log entry for every status change."""
    db.add(
        TutoringRequestAuditLog(
            request_id=request.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by_id=changed_by_id,
        )
    )


def _new_request(
    student_id: uuid.UUID,
    tutor_id: uuid.UUID,
    subject,
    level,
    slot_id: str,
    date: datetime,
    is_broadcast: bool,
) -> TutoringRequest:
    return TutoringRequest(
        id=uuid.uuid4(),
        student_id=student_id,
        tutor_id=tutor_id,
        subject=Subject(subject).value,
        level=parse_class_level(level),
        slot_id=format_slot_id(*parse_slot_id(slot_id)),
        date=date,
        status=RequestStatus.PENDING,
        is_broadcast=is_broadcast,
    )


# ── Direct Request ────────────────────────────────────────────

async def create_direct_request(
    db: AsyncSession,
    notifier: NotificationSink,
    student_id: uuid.UUID,
    tutor_id: uuid.UUID,
    subject,
    level,
    slot_id: str,
    date: datetime,
) -> TutoringRequest:
    """
    Persist one PENDING request to a chosen tutor and link the pair's conversation.
    The tutor is notified with NEW_REQUEST.
    """
    if tutor_id == student_id:
        raise SelfTargetError("Vous ne pouvez pas vous envoyer une demande")

    student = await _get_user_or_404(db, student_id, "Utilisateur non trouvé")
    tutor = await _get_user_or_404(db, tutor_id, "Tuteur non trouvé")
    if tutor.role != UserRole.STUDENT or not tutor.email_verified or not tutor.is_active:
        raise NotFoundError("Tuteur non trouvé")

    request = _new_request(student_id, tutor_id, subject, level, slot_id, date, is_broadcast=False)
    request.student, request.tutor = student, tutor
    db.add(request)
    _log_status_change(db, request, None, RequestStatus.PENDING, student_id)
    await db.flush()

    conversation, created = await get_or_create_conversation(
        db, student_id, tutor_id, request_id=request.id
    )
    request.conversation_id = conversation.id

    notifier.emit(
        tutor_id,
        NotificationType.NEW_REQUEST,
        {"student_name": student.display_name, "subject": request.subject},
        request_id=request.id,
        data={"conversation_id": str(conversation.id), "slot_id": request.slot_id},
    )
    await db.flush()

    logger.info(
        f"Request {request.id} created: {student_id} → {tutor_id} "
        f"({request.subject}, {request.slot_id}, conversation {'new' if created else 'reused'})"
    )
    return request


# ── Broadcast Call ────────────────────────────────────────────

async def create_broadcast_call(
    db: AsyncSession,
    notifier: NotificationSink,
    student_id: uuid.UUID,
    subject,
    level,
    slot_id: str,
    date: datetime,
) -> BroadcastResult:
    """
    Fan a request out to every eligible tutor.
    Nothing is written when no tutor matches.
    """
    await _get_user_or_404(db, student_id, "Utilisateur non trouvé")

    query = MatchQuery(subject=Subject(subject).value, level=parse_class_level(level), slot_id=slot_id)
    tutors = await find_eligible_tutors(db, query, student_id)
    if not tutors:
        logger.info(f"Broadcast by {student_id} for {query.subject} {query.slot_id}: no eligible tutor")
        raise NoEligibleTutorError("Aucun tuteur disponible pour ce créneau")

    requests = []
    for tutor in tutors:
        request = _new_request(student_id, tutor.id, subject, level, slot_id, date, is_broadcast=True)
        db.add(request)
        _log_status_change(db, request, None, RequestStatus.PENDING, student_id)
        requests.append(request)
    await db.flush()

    for request in requests:
        notifier.emit(
            request.tutor_id,
            NotificationType.BROADCAST_CALL,
            {"subject": request.subject, "slot_id": request.slot_id},
            request_id=request.id,
        )
    await db.flush()

    logger.info(f"Broadcast by {student_id} sent to {len(requests)} tutors")
    return BroadcastResult(
        count=len(requests),
        notified_tutor_ids=[r.tutor_id for r in requests],
        requests=requests,
    )


# ── Status Transitions ────────────────────────────────────────

async def update_request_status(
    db: AsyncSession,
    notifier: NotificationSink,
    actor_id: uuid.UUID,
    request_id: uuid.UUID,
    new_status,
) -> TutoringRequest:
    """
    Only the designated tutor may move a request.
    ACCEPTED notifies the student and makes sure the pair has a conversation;
    REJECTED notifies the student.
    """
    request = await db.get(TutoringRequest, request_id)
    if not request:
        raise NotFoundError("Demande non trouvée")
    if request.tutor_id != actor_id:
        raise ForbiddenError("Vous n'êtes pas autorisé à modifier cette demande")

    new_status = RequestStatus(new_status)
    old_status = request.status
    request.status = new_status
    _log_status_change(db, request, old_status, new_status, actor_id)
    await db.flush()

    if new_status == RequestStatus.ACCEPTED:
        if request.conversation_id is None:
            conversation, _ = await get_or_create_conversation(
                db, request.student_id, request.tutor_id, request_id=request.id
            )
            request.conversation_id = conversation.id
        notifier.emit(
            request.student_id,
            NotificationType.REQUEST_ACCEPTED,
            {"subject": request.subject},
            request_id=request.id,
            data={"conversation_id": str(request.conversation_id)},
        )
    elif new_status == RequestStatus.REJECTED:
        notifier.emit(
            request.student_id,
            NotificationType.REQUEST_REJECTED,
            {"subject": request.subject},
            request_id=request.id,
        )

    await db.flush()
    logger.info(f"Request {request.id}: {old_status.value} → {new_status.value} by {actor_id}")
    return request


# ── Listing ───────────────────────────────────────────────────

async def list_requests(db: AsyncSession, user_id: uuid.UUID, mode: str) -> List[TutoringRequest]:
    """tutore: requests the user sent as a student. tutorant: requests addressed to them."""
    if mode not in REQUEST_MODES:
        raise ValueError(f"Unknown request mode: {mode!r}")

    column = TutoringRequest.tutor_id if mode == "tutorant" else TutoringRequest.student_id
    result = await db.execute(
        select(TutoringRequest)
        .where(column == user_id)
        .options(selectinload(TutoringRequest.student), selectinload(TutoringRequest.tutor))
        .order_by(TutoringRequest.created_at.desc())
    )
    return list(result.scalars())

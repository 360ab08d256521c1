"""
services/moderation/router.py
Abuse reports and the moderator console.

Any authenticated user may file a report; everything else is MODERATOR-only.
ALL moderator mutations are logged to ModerationAuditLog before returning.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from services.notification.sink import NotificationSink, get_notifier
from shared.middleware.auth import get_current_user, require_moderator
from shared.models.models import (
    AbuseReport,
    Conversation,
    Message,
    ModerationAuditLog,
    NotificationType,
    ReportStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AbuseReportCreate,
    AbuseReportResponse,
    ChatMessageResponse,
    ModerationConversationResponse,
    ModerationReportListResponse,
    ModerationReportResponse,
    ParticipantSummary,
    ReportedConversation,
    ReporterSummary,
    ReportStatusUpdate,
    RequestBrief,
)
from shared.utils.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mod", tags=["Moderation"])


# ── Helpers ───────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    moderator: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to ModerationAuditLog."""
    db.add(ModerationAuditLog(
        moderator_id=moderator.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))


async def _get_conversation_with_participants(
    db: AsyncSession, conversation_id: UUID
) -> Optional[Conversation]:
    result = await db.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .options(selectinload(Conversation.participant1), selectinload(Conversation.participant2))
    )
    return result.scalar_one_or_none()


async def _report_view(db: AsyncSession, report: AbuseReport) -> ModerationReportResponse:
    conversation = None
    if report.conversation_id:
        conv = await _get_conversation_with_participants(db, report.conversation_id)
        if conv:
            conversation = ReportedConversation(
                id=conv.id,
                participant1=ParticipantSummary.model_validate(conv.participant1),
                participant2=ParticipantSummary.model_validate(conv.participant2),
            )
    return ModerationReportResponse(
        **AbuseReportResponse.model_validate(report).model_dump(),
        reporter=ReporterSummary.model_validate(report.reporter),
        updated_at=report.updated_at,
        conversation=conversation,
    )


# ── Reporting (any authenticated user) ────────────────────────

@router.post(
    "/abuse-reports",
    response_model=AbuseReportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_abuse_report(
    data: AbuseReportCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    """
    Report a conversation or a single message.
    A message report is attached to its conversation. Only a participant may report.
    Every moderator receives an ABUSE_REPORT notification.
    """
    conversation_id = data.conversation_id
    if data.message_id:
        message = await db.get(Message, data.message_id)
        if not message:
            raise NotFoundError("Message non trouvé")
        if conversation_id and message.conversation_id != conversation_id:
            raise NotFoundError("Message non trouvé dans cette conversation")
        conversation_id = message.conversation_id

    conversation = await db.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError("Conversation non trouvée")
    if not conversation.has_participant(current_user.id):
        raise ForbiddenError("Accès refusé")

    report = AbuseReport(
        reporter_id=current_user.id,
        conversation_id=conversation_id,
        message_id=data.message_id,
        reason=data.reason,
        description=data.description,
        status=ReportStatus.OPEN,
    )
    db.add(report)
    await db.flush()

    moderator_ids = await db.scalars(select(User.id).where(User.role == UserRole.MODERATOR))
    for moderator_id in moderator_ids:
        notifier.emit(
            moderator_id,
            NotificationType.ABUSE_REPORT,
            {"reporter_name": current_user.display_name},
            data={"report_id": str(report.id), "conversation_id": str(conversation_id)},
        )

    await db.commit()
    await notifier.publish_pending()
    logger.info(f"Abuse report {report.id} filed by {current_user.id} on conversation {conversation_id}")
    return AbuseReportResponse.model_validate(report)


# ── Moderator Console ─────────────────────────────────────────

@router.get("/reports", response_model=ModerationReportListResponse)
async def list_reports(
    report_status: Optional[ReportStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """All reports, newest first, optionally filtered by status."""
    query = (
        select(AbuseReport)
        .options(selectinload(AbuseReport.reporter))
        .order_by(AbuseReport.created_at.desc())
    )
    if report_status:
        query = query.where(AbuseReport.status == report_status)

    result = await db.execute(query)
    return ModerationReportListResponse(
        reports=[await _report_view(db, r) for r in result.scalars()]
    )


@router.get("/conversations/{conversation_id}", response_model=ModerationConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    request: Request,
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """Full thread for review. Reading a thread is itself an audited action."""
    result = await db.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .options(
            selectinload(Conversation.participant1),
            selectinload(Conversation.participant2),
            selectinload(Conversation.request),
            selectinload(Conversation.messages).selectinload(Message.sender),
        )
    )
    conversation = result.scalar_one_or_none()
    if not conversation:
        raise NotFoundError("Conversation non trouvée")

    await _log(db, current_user, "VIEW_CONVERSATION", "conversation", str(conversation.id), request=request)
    await db.commit()

    return ModerationConversationResponse(
        id=conversation.id,
        participant1=ParticipantSummary.model_validate(conversation.participant1),
        participant2=ParticipantSummary.model_validate(conversation.participant2),
        request=RequestBrief.model_validate(conversation.request) if conversation.request else None,
        messages=[
            ChatMessageResponse(
                id=m.id,
                conversation_id=m.conversation_id,
                sender_id=m.sender_id,
                sender=ParticipantSummary.model_validate(m.sender),
                content=m.content,
                read=m.read,
                created_at=m.created_at,
            )
            for m in conversation.messages
        ],
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.patch("/reports/{report_id}", response_model=ModerationReportResponse)
async def update_report_status(
    report_id: UUID,
    data: ReportStatusUpdate,
    request: Request,
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AbuseReport)
        .where(AbuseReport.id == report_id)
        .options(selectinload(AbuseReport.reporter))
    )
    report = result.scalar_one_or_none()
    if not report:
        raise NotFoundError("Signalement non trouvé")

    old_status = report.status
    report.status = ReportStatus(data.status)
    await _log(
        db, current_user, "UPDATE_REPORT_STATUS", "abuse_report", str(report.id),
        {"from": old_status.value, "to": report.status.value},
        request,
    )
    await db.commit()

    logger.info(f"Report {report.id}: {old_status.value} → {report.status.value} by {current_user.id}")
    return await _report_view(db, report)


@router.get("/audit-logs")
async def get_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """Immutable moderator action log, newest first."""
    total = await db.scalar(select(func.count(ModerationAuditLog.id)))
    result = await db.execute(
        select(ModerationAuditLog)
        .order_by(ModerationAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [
            {
                "id": str(log.id),
                "moderator_id": str(log.moderator_id),
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "payload": log.payload,
                "ip_address": log.ip_address,
                "created_at": log.created_at.isoformat(),
            }
            for log in result.scalars()
        ],
        "total": total or 0,
        "page": page,
        "page_size": page_size,
    }

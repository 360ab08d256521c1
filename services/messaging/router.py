"""
services/messaging/router.py
1:1 conversations between students: inbox, thread, new message, read receipts.
New messages are pushed to the conversation:<id> realtime channel after commit.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from services.messaging.conversations import (
    get_conversation_for_participant,
    get_or_create_conversation,
    mark_conversation_read,
    post_message,
    unread_counts,
)
from services.notification.sink import NotificationSink, conversation_channel, get_notifier
from shared.middleware.auth import require_verified
from shared.models.models import Conversation, Message, User
from shared.schemas.schemas import (
    ChatMessageCreate,
    ChatMessageListResponse,
    ChatMessageResponse,
    ConversationCreate,
    ConversationListResponse,
    ConversationResponse,
    ConversationSummary,
    LastMessage,
    MessageResponse,
    ParticipantSummary,
    RequestBrief,
)

router = APIRouter(prefix="/conversations", tags=["Messaging"])


# ── Helpers ───────────────────────────────────────────────────

def _message_out(message: Message, sender: User) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        sender=ParticipantSummary.model_validate(sender),
        content=message.content,
        read=message.read,
        created_at=message.created_at,
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.get("", response_model=ConversationListResponse)
async def list_my_conversations(
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Inbox, most recently active first, with partner, last message and unread count."""
    result = await db.execute(
        select(Conversation)
        .where(
            or_(
                Conversation.participant1_id == current_user.id,
                Conversation.participant2_id == current_user.id,
            )
        )
        .options(
            selectinload(Conversation.participant1),
            selectinload(Conversation.participant2),
            selectinload(Conversation.request),
        )
        .order_by(Conversation.updated_at.desc())
    )
    conversations = list(result.scalars())
    conversation_ids = [c.id for c in conversations]

    unread = await unread_counts(db, conversation_ids, current_user.id)
    last_messages = {}
    if conversation_ids:
        latest = (
            select(Message.conversation_id, func.max(Message.created_at).label("latest"))
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
            .subquery()
        )
        message_rows = await db.execute(
            select(Message).join(
                latest,
                (Message.conversation_id == latest.c.conversation_id)
                & (Message.created_at == latest.c.latest),
            )
        )
        for message in message_rows.scalars():
            last_messages.setdefault(message.conversation_id, message)

    summaries = []
    for conv in conversations:
        partner = conv.participant2 if conv.participant1_id == current_user.id else conv.participant1
        last = last_messages.get(conv.id)
        summaries.append(
            ConversationSummary(
                id=conv.id,
                participant=ParticipantSummary.model_validate(partner),
                request_id=conv.request_id,
                request=RequestBrief.model_validate(conv.request) if conv.request else None,
                last_message=LastMessage.model_validate(last) if last else None,
                unread_count=unread.get(conv.id, 0),
                updated_at=conv.updated_at,
            )
        )
    return ConversationListResponse(conversations=summaries)


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def open_conversation(
    data: ConversationCreate,
    response: Response,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Return the pair's existing conversation (200) or open a new one (201)."""
    conversation, created = await get_or_create_conversation(
        db, current_user.id, data.participant_id, request_id=data.request_id
    )
    await db.commit()
    if not created:
        response.status_code = status.HTTP_200_OK
    return ConversationResponse.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=ChatMessageListResponse)
async def get_messages(
    conversation_id: UUID,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    await get_conversation_for_participant(db, conversation_id, current_user.id)

    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .options(selectinload(Message.sender))
        .order_by(Message.created_at.asc())
    )
    return ChatMessageListResponse(
        messages=[_message_out(m, m.sender) for m in result.scalars()]
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: ChatMessageCreate,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    conversation = await get_conversation_for_participant(db, conversation_id, current_user.id)
    message = await post_message(db, conversation, current_user.id, data.content)
    await db.commit()

    out = _message_out(message, current_user)
    notifier.queue(
        conversation_channel(conversation.id),
        "message-received",
        out.model_dump(mode="json"),
    )
    await notifier.publish_pending()
    return out


@router.post("/{conversation_id}/read", response_model=MessageResponse)
async def mark_read(
    conversation_id: UUID,
    current_user: User = Depends(require_verified),
    db: AsyncSession = Depends(get_db),
):
    """Mark every message from the other participant as read."""
    await get_conversation_for_participant(db, conversation_id, current_user.id)
    count = await mark_conversation_read(db, conversation_id, current_user.id)
    await db.commit()
    return MessageResponse(message=f"{count} messages marked as read")

"""
services/messaging/conversations.py
Conversation linkage shared by matching and messaging.
One conversation per unordered pair of users, enforced by the unique pair_key.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Conversation,
    Message,
    TutoringRequest,
    User,
    conversation_pair_key,
)
from shared.utils.errors import ForbiddenError, NotFoundError, SelfTargetError

logger = logging.getLogger(__name__)


async def find_conversation(
    db: AsyncSession, user_a: uuid.UUID, user_b: uuid.UUID
) -> Optional[Conversation]:
    """Look up the conversation for a pair, whichever order they are given in."""
    result = await db.execute(
        select(Conversation).where(Conversation.pair_key == conversation_pair_key(user_a, user_b))
    )
    return result.scalar_one_or_none()


async def get_or_create_conversation(
    db: AsyncSession,
    user_a: uuid.UUID,
    user_b: uuid.UUID,
    request_id: Optional[uuid.UUID] = None,
) -> Tuple[Conversation, bool]:
    """
    Return (conversation, created).

    request_id is only recorded on a newly created conversation; an existing
    thread keeps whatever request it was opened for.
    Creation runs in a SAVEPOINT so that losing a race against a concurrent
    creator only rolls back the insert, after which the winner's row is read.
    """
    if user_a == user_b:
        raise SelfTargetError("Impossible de créer une conversation avec vous-même")

    if not await db.get(User, user_b):
        raise NotFoundError("Utilisateur non trouvé")

    if request_id is not None:
        request = await db.get(TutoringRequest, request_id)
        if not request:
            raise NotFoundError("Demande non trouvée")
        if {request.student_id, request.tutor_id} != {user_a, user_b}:
            raise ForbiddenError("Cette demande ne concerne pas cette conversation")

    existing = await find_conversation(db, user_a, user_b)
    if existing:
        return existing, False

    # Flush the caller's pending rows so a rolled-back savepoint only discards this insert
    await db.flush()

    conversation = Conversation(
        participant1_id=user_a,
        participant2_id=user_b,
        pair_key=conversation_pair_key(user_a, user_b),
        request_id=request_id,
    )
    try:
        async with db.begin_nested():
            db.add(conversation)
    except IntegrityError:
        logger.info(f"Conversation {conversation.pair_key} created concurrently, re-reading")
        existing = await find_conversation(db, user_a, user_b)
        if existing is None:
            raise
        return existing, False

    logger.info(f"Conversation {conversation.id} opened between {user_a} and {user_b}")
    return conversation, True


async def get_conversation_for_participant(
    db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID
) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError("Conversation non trouvée")
    if not conversation.has_participant(user_id):
        raise ForbiddenError("Accès refusé")
    return conversation


async def post_message(
    db: AsyncSession,
    conversation: Conversation,
    sender_id: uuid.UUID,
    content: str,
) -> Message:
    """Append a message and bump the conversation so it sorts first in the inbox."""
    if not conversation.has_participant(sender_id):
        raise ForbiddenError("Accès refusé")

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=content,
    )
    db.add(message)
    conversation.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return message


async def unread_counts(
    db: AsyncSession, conversation_ids: Iterable[uuid.UUID], viewer_id: uuid.UUID
) -> Dict[uuid.UUID, int]:
    """
    Messages from the other participant the viewer has not read yet, per conversation.
    Conversations with nothing unread are absent from the result.
    """
    conversation_ids = list(conversation_ids)
    if not conversation_ids:
        return {}
    rows = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(
            Message.conversation_id.in_(conversation_ids),
            Message.sender_id != viewer_id,
            Message.read == False,
        )
        .group_by(Message.conversation_id)
    )
    return {conv_id: count for conv_id, count in rows.all()}


async def mark_conversation_read(
    db: AsyncSession, conversation_id: uuid.UUID, viewer_id: uuid.UUID
) -> int:
    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.sender_id != viewer_id,
            Message.read == False,
        )
        .values(read=True)
    )
    return result.rowcount or 0

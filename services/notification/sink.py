"""
services/notification/sink.py
In-app notification dispatch.
Rows are added to the caller's session; realtime payloads are queued and
only published to Redis once the caller has committed.
"""

import logging
import uuid
from typing import Any, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    NotificationType.NEW_REQUEST: {
        "title": "Nouvelle demande de tutorat",
        "message": "{student_name} demande de l'aide en {subject}",
    },
    NotificationType.REQUEST_ACCEPTED: {
        "title": "Demande acceptée",
        "message": "Votre demande de tutorat en {subject} a été acceptée",
    },
    NotificationType.REQUEST_REJECTED: {
        "title": "Demande refusée",
        "message": "Votre demande de tutorat en {subject} a été refusée",
    },
    NotificationType.BROADCAST_CALL: {
        "title": "Appel de tutorat",
        "message": "Un élève recherche de l'aide en {subject} pour le créneau {slot_id}",
    },
    NotificationType.NEW_MESSAGE: {
        "title": "Nouveau message",
        "message": "{sender_name} vous a envoyé un message",
    },
    NotificationType.ABUSE_REPORT: {
        "title": "Nouveau signalement",
        "message": "Nouveau signalement de {reporter_name}",
    },
}


def user_channel(user_id: uuid.UUID) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: uuid.UUID) -> str:
    return f"conversation:{conversation_id}"


class NotificationSink:
    """
    Fire-and-forget notifier handed to the matching and messaging services.

    emit() never touches the network. publish_pending() must be awaited after
    the session commits; a failed publish is logged and swallowed, since the
    notification row is already the durable record.
    """

    def __init__(self, db: AsyncSession, redis=None):
        self.db = db
        self.redis = redis
        self._pending: List[Tuple[str, str, Any]] = []

    def emit(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType,
        template_vars: Optional[dict] = None,
        request_id: Optional[uuid.UUID] = None,
        data: Optional[dict] = None,
    ) -> Notification:
        template = TEMPLATES[notification_type]
        vars_ = template_vars or {}

        notif = Notification(
            user_id=user_id,
            request_id=request_id,
            type=notification_type,
            title=template["title"].format(**vars_),
            message=template["message"].format(**vars_),
            data=data,
        )
        self.db.add(notif)

        self.queue(
            user_channel(user_id),
            "notification",
            {
                "type": notification_type.value,
                "title": notif.title,
                "message": notif.message,
                "request_id": str(request_id) if request_id else None,
                "data": data,
            },
        )
        return notif

    def queue(self, channel: str, event: str, payload: Any) -> None:
        self._pending.append((channel, event, payload))

    @property
    def pending(self) -> List[Tuple[str, str, Any]]:
        return list(self._pending)

    async def publish_pending(self) -> int:
        """Publish every queued event. Returns how many were delivered to Redis."""
        pending, self._pending = self._pending, []
        if self.redis is None:
            return 0

        cache = RedisCache(self.redis)
        published = 0
        for channel, event, payload in pending:
            try:
                await cache.publish(channel, event, payload)
                published += 1
            except Exception as e:
                logger.warning(f"Realtime publish to {channel} failed: {e}")
        return published


async def get_notifier(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> NotificationSink:
    """FastAPI dependency: a sink bound to the request's session."""
    return NotificationSink(db, redis)

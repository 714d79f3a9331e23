"""
Notification side-channel (outbox pattern).

Domain operations never talk to a notification sink directly.  They call
``Outbox.enqueue`` inside their own transaction, so the event exists if and
only if the state change committed.  ``dispatch_pending`` later hands
pending events to a ``NotificationSink``; a failing sink is logged and
retried on the next cycle, never surfaced to the user action that caused
the event.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from .models import NotificationModel, OutboxEventModel
from .store import NOTIFICATIONS, OUTBOX, Condition, DocumentStore
from carpool.config import settings
from carpool.domain.enums import NotificationType
from carpool.domain.exceptions import AuthorizationError, NotificationNotFoundError
from carpool.domain.schedule import utcnow

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity_id: Optional[str],
    ) -> None: ...


class StoreNotificationSink:
    """Delivers by writing a ``notifications`` document for the user."""

    def __init__(self, session: AsyncSession):
        self.store = DocumentStore(session)

    async def notify(self, user_id, type, title, message, related_entity_id) -> None:
        await self.store.create(
            NOTIFICATIONS,
            {
                "user_id": user_id,
                "type": NotificationType(type),
                "title": title,
                "message": message,
                "related_entity_id": related_entity_id,
                "is_read": False,
            },
        )


class Outbox:
    def __init__(self, session: AsyncSession):
        self.store = DocumentStore(session)

    async def enqueue(
        self,
        *,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity_id: Optional[str] = None,
    ) -> OutboxEventModel:
        event = await self.store.create(
            OUTBOX,
            {
                "user_id": user_id,
                "type": NotificationType(type),
                "title": title,
                "message": message,
                "related_entity_id": related_entity_id,
                "attempts": 0,
            },
        )
        logger.debug("Queued %s notification for user %s", event.type.value, user_id)
        return event

    async def pending(
        self, limit: int, max_attempts: int, *, lock: bool = False
    ) -> list[OutboxEventModel]:
        return await self.store.query(
            OUTBOX,
            [
                Condition("delivered_at", "==", None),
                Condition("attempts", "<", max_attempts),
            ],
            order_by="created_at",
            limit=limit,
            for_update=lock,
            skip_locked=lock,
        )


async def dispatch_pending(
    session: AsyncSession,
    sink: Optional[NotificationSink] = None,
    *,
    batch_size: Optional[int] = None,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Deliver up to *batch_size* pending events.  Returns the number delivered."""
    sink = sink or StoreNotificationSink(session)
    outbox = Outbox(session)
    store = outbox.store
    events = await outbox.pending(
        batch_size or settings.outbox_batch_size,
        max_attempts or settings.outbox_max_attempts,
        lock=True,
    )

    delivered = 0
    for event in events:
        try:
            await sink.notify(
                event.user_id,
                event.type,
                event.title,
                event.message,
                event.related_entity_id,
            )
        except Exception as exc:
            logger.warning(
                "Notification %s to user %s failed (attempt %d): %s",
                event.id,
                event.user_id,
                event.attempts + 1,
                exc,
            )
            await store.update(
                OUTBOX,
                event.id,
                {"attempts": event.attempts + 1, "last_error": str(exc)[:500]},
            )
            continue

        await store.update(
            OUTBOX,
            event.id,
            {"attempts": event.attempts + 1, "delivered_at": now or utcnow()},
        )
        delivered += 1

    return delivered


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.store = DocumentStore(session)

    async def for_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[NotificationModel]:
        conditions = [Condition("user_id", "==", user_id)]
        if unread_only:
            conditions.append(Condition("is_read", "==", False))
        return await self.store.query(
            NOTIFICATIONS, conditions, order_by="created_at", descending=True
        )

    async def mark_read(
        self, notification_id: str, acting_user_id: str
    ) -> NotificationModel:
        notification = await self.store.get(NOTIFICATIONS, notification_id)
        if notification is None:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found"
            )
        if notification.user_id != acting_user_id:
            raise AuthorizationError("Cannot modify another user's notification")
        if notification.is_read:
            return notification
        return await self.store.update(
            NOTIFICATIONS, notification_id, {"is_read": True}
        )

"""
Notification endpoints
======================

GET  /api/v1/notifications                      -- the caller's notifications
POST /api/v1/notifications/{notification_id}/read -- mark one as read
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.api.dependencies import Actor, get_actor, get_db
from carpool.api.middleware import limiter
from carpool.api.schemas import NotificationResponse
from carpool.config import settings
from carpool.infrastructure.notifications import NotificationRepository

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse], summary="My notifications")
@limiter.limit(settings.rate_limit)
async def list_notifications(
    request: Request,
    unread_only: bool = False,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationRepository(db).for_user(actor.user_id, unread_only)


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    notification_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationRepository(db).mark_read(notification_id, actor.user_id)

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.auth_token import get_current_user
from tourneyhub.database import get_db
from tourneyhub.deps.security import require_admin
from tourneyhub.models.user import User
from tourneyhub.schemas import (
    MessageResponse,
    NotificationCreate,
    NotificationOut,
    NotificationSendResult,
    UnreadCount,
)
from tourneyhub.services import notifications
from tourneyhub.services.accounts import record_admin_action

logger = logging.getLogger("notifications")

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _out(notification, is_read: bool = False) -> NotificationOut:
    data = NotificationOut.model_validate(notification)
    data.is_read = is_read
    return data


@router.get("", response_model=List[NotificationOut])
async def list_notifications(
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = await notifications.notifications_for_user(db, user, limit=limit)
    return [_out(n, is_read) for n, is_read in rows]


@router.get("/count", response_model=UnreadCount)
async def unread_count(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return UnreadCount(count=await notifications.unread_count(db, user))


@router.patch("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await notifications.mark_read(db, notification_id, user)
    return MessageResponse(message="Notification marked as read")


@router.post("/mark-all-read", response_model=MessageResponse)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    marked = await notifications.mark_all_read(db, user)
    return MessageResponse(message=f"Marked {marked} notifications as read")


@router.post("", response_model=NotificationSendResult, status_code=status.HTTP_201_CREATED)
async def send_notification(
    payload: NotificationCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Broadcast, or target one user (``user_id``) or several (``user_ids``)."""

    fields = dict(
        title=payload.title,
        message=payload.message,
        related_id=payload.related_id,
    )
    if payload.user_ids:
        sent, recipients = await notifications.send_to_users(
            db, payload.user_ids, type=payload.type, **fields
        )
    elif payload.user_id is not None:
        sent = await notifications.send_to_user(db, payload.user_id, type=payload.type, **fields)
        recipients = 1
    else:
        sent = await notifications.send_broadcast(db, type=payload.type, **fields)
        recipients = None

    record_admin_action(
        db, admin, "send_notification", target_type="notification", target_id=sent.id,
        detail=sent.audience,
    )
    await db.commit()
    logger.info("Admin %s sent %s notification %s", admin.id, sent.audience, sent.id)
    return NotificationSendResult(notification=_out(sent), recipients=recipients)

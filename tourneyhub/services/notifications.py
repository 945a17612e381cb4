"""Notification dispatch and per-user read state."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.errors import AuthorizationError, NotFoundError, ValidationError
from tourneyhub.models.notification import (
    Audience,
    Notification,
    NotificationRead,
    NotificationRecipient,
)
from tourneyhub.models.registration import Registration
from tourneyhub.models.tournament import Tournament
from tourneyhub.models.user import User
from tourneyhub.utils import utcnow

_LOGGER = logging.getLogger(__name__)


def _visible_to(user_id: int):
    """Filter for notifications addressed to ``user_id`` (broadcasts included)."""

    in_group = exists().where(
        NotificationRecipient.notification_id == Notification.id,
        NotificationRecipient.user_id == user_id,
    )
    return or_(
        Notification.audience == Audience.broadcast.value,
        Notification.user_id == user_id,
        (Notification.audience == Audience.group.value) & in_group,
    )


async def send_broadcast(
    db: AsyncSession,
    *,
    title: str,
    message: str,
    type: str = "broadcast",
    related_id: Optional[int] = None,
) -> Notification:
    notification = Notification(
        audience=Audience.broadcast.value,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
    )
    db.add(notification)
    await db.commit()
    await db.refresh(notification)
    _LOGGER.info("Broadcast notification %s sent", notification.id)
    return notification


async def send_to_user(
    db: AsyncSession,
    user_id: int,
    *,
    title: str,
    message: str,
    type: str = "personal",
    related_id: Optional[int] = None,
) -> Notification:
    if await db.get(User, user_id) is None:
        raise NotFoundError("User not found")
    notification = Notification(
        audience=Audience.user.value,
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
    )
    db.add(notification)
    await db.commit()
    await db.refresh(notification)
    _LOGGER.info("Notification %s sent to user %s", notification.id, user_id)
    return notification


async def send_to_users(
    db: AsyncSession,
    user_ids: Iterable[int],
    *,
    title: str,
    message: str,
    type: str = "personal",
    related_id: Optional[int] = None,
) -> tuple[Notification, int]:
    """One notification row linked to every known recipient.

    Unknown user ids are dropped. Returns the notification and the number of
    recipients it reached.
    """

    wanted = list(dict.fromkeys(int(uid) for uid in user_ids))
    if not wanted:
        raise ValidationError("At least one recipient is required")

    known = (await db.execute(select(User.id).where(User.id.in_(wanted)))).scalars().all()
    known_set = set(known)
    recipients = [uid for uid in wanted if uid in known_set]
    if not recipients:
        raise NotFoundError("None of the recipients exist")

    notification = Notification(
        audience=Audience.group.value,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
    )
    db.add(notification)
    await db.flush()
    db.add_all(
        NotificationRecipient(notification_id=notification.id, user_id=uid) for uid in recipients
    )
    await db.commit()
    await db.refresh(notification)
    _LOGGER.info(
        "Notification %s sent to %s users (%s unknown ids dropped)",
        notification.id,
        len(recipients),
        len(wanted) - len(recipients),
    )
    return notification, len(recipients)


async def notify_room_update(db: AsyncSession, tournament: Tournament) -> int:
    """Tell everyone who registered a team that the room credentials changed."""

    registrants = (
        await db.execute(
            select(Registration.user_id)
            .where(Registration.tournament_id == tournament.id)
            .distinct()
        )
    ).scalars().all()
    if not registrants:
        return 0

    _, count = await send_to_users(
        db,
        registrants,
        title=f"Room Info Updated - {tournament.title}",
        message=(
            f"Room ID: {tournament.room_id or 'Not set'}, "
            f"Password: {tournament.room_password or 'Not set'}"
        ),
        type="tournament",
        related_id=tournament.id,
    )
    return count


async def notifications_for_user(
    db: AsyncSession, user: User, limit: int = 100
) -> list[tuple[Notification, bool]]:
    """Newest first, each paired with whether this user has read it."""

    read_ids = select(NotificationRead.notification_id).where(NotificationRead.user_id == user.id)
    result = await db.execute(
        select(Notification, Notification.id.in_(read_ids))
        .where(_visible_to(user.id))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return [(notification, bool(is_read)) for notification, is_read in result.all()]


async def unread_count(db: AsyncSession, user: User) -> int:
    read_ids = select(NotificationRead.notification_id).where(NotificationRead.user_id == user.id)
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            _visible_to(user.id), Notification.id.not_in(read_ids)
        )
    )
    return count or 0


async def mark_read(db: AsyncSession, notification_id: int, user: User) -> NotificationRead:
    """Mark one notification read. Repeated calls leave exactly one read row."""

    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    visible = await db.scalar(
        select(Notification.id).where(Notification.id == notification_id, _visible_to(user.id))
    )
    if visible is None:
        raise AuthorizationError("This notification is not addressed to you")

    existing = await db.scalar(
        select(NotificationRead).where(
            NotificationRead.user_id == user.id,
            NotificationRead.notification_id == notification_id,
        )
    )
    if existing is not None:
        return existing

    read = NotificationRead(user_id=user.id, notification_id=notification_id)
    db.add(read)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request inserted the same row first.
        await db.rollback()
        existing = await db.scalar(
            select(NotificationRead).where(
                NotificationRead.user_id == user.id,
                NotificationRead.notification_id == notification_id,
            )
        )
        if existing is None:
            raise
        return existing
    await db.refresh(read)
    return read


async def mark_all_read(db: AsyncSession, user: User) -> int:
    read_ids = select(NotificationRead.notification_id).where(NotificationRead.user_id == user.id)
    unread = (
        await db.execute(
            select(Notification.id).where(_visible_to(user.id), Notification.id.not_in(read_ids))
        )
    ).scalars().all()
    if not unread:
        return 0
    db.add_all(NotificationRead(user_id=user.id, notification_id=nid) for nid in unread)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        _LOGGER.info("Concurrent mark-all-read for user %s; retrying", user.id)
        return await mark_all_read(db, user)
    return len(unread)


async def purge_older_than(db: AsyncSession, cutoff: datetime) -> int:
    """Delete notifications created before ``cutoff`` with their read and recipient rows."""

    stale = select(Notification.id).where(Notification.created_at < cutoff)
    await db.execute(delete(NotificationRead).where(NotificationRead.notification_id.in_(stale)))
    await db.execute(
        delete(NotificationRecipient).where(NotificationRecipient.notification_id.in_(stale))
    )
    result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
    await db.commit()
    removed = result.rowcount or 0
    if removed:
        _LOGGER.info("Purged %s notifications older than %s", removed, cutoff.isoformat())
    return removed


class NotificationCleanup:
    """Periodic retention sweep for old notifications."""

    def __init__(
        self,
        session_factory,
        *,
        retention_hours: Optional[int] = None,
        interval_seconds: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self.retention = timedelta(
            hours=retention_hours
            if retention_hours is not None
            else int(os.getenv("NOTIFICATION_RETENTION_HOURS", "24"))
        )
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else int(os.getenv("NOTIFICATION_CLEANUP_INTERVAL_SECONDS", str(6 * 60 * 60)))
        )
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> int:
        async with self._session_factory() as db:
            return await purge_older_than(db, (now or utcnow()) - self.retention)

    async def start(self) -> None:
        if self.interval_seconds <= 0 or self._task:
            return

        async def _loop():
            while True:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    _LOGGER.exception("Notification cleanup failed: %s", exc)
                await asyncio.sleep(self.interval_seconds)

        self._task = asyncio.create_task(_loop())

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None


_cleanup: Optional[NotificationCleanup] = None


def get_notification_cleanup(session_factory=None) -> NotificationCleanup:
    global _cleanup
    if _cleanup is None:
        if session_factory is None:
            from tourneyhub import database

            def session_factory():
                return database.SessionLocal()

        _cleanup = NotificationCleanup(session_factory)
    return _cleanup

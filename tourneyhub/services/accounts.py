"""User account administration: audit trail and cascading deletes."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.errors import NotFoundError, ValidationError
from tourneyhub.models.admin_action import AdminAction
from tourneyhub.models.notification import Notification, NotificationRead, NotificationRecipient
from tourneyhub.models.registration import Registration
from tourneyhub.models.team import Team
from tourneyhub.models.team_member import TeamMember
from tourneyhub.models.user import User
from tourneyhub.services.registration import release_registrations
from tourneyhub.services.roster import purge_team

_LOGGER = logging.getLogger(__name__)


def record_admin_action(
    db: AsyncSession,
    admin: User,
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    detail: Optional[str] = None,
) -> AdminAction:
    """Queue an audit row on ``db``; it is written with the caller's commit."""

    entry = AdminAction(
        admin_id=admin.id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=detail,
    )
    db.add(entry)
    _LOGGER.info(
        "Admin %s: %s %s %s", admin.id, action, target_type or "-", target_id if target_id is not None else "-"
    )
    return entry


async def delete_user(db: AsyncSession, user_id: int, admin: User) -> None:
    """Delete an account and everything it owns.

    Owned teams go with their rosters and registrations; registrations the
    user created for other teams are cancelled; memberships, personal
    notifications, and read markers are removed. Tournament capacity is given
    back for every registration that disappears.
    """

    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account")
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    owned = (await db.execute(select(Team.id).where(Team.owner_id == user_id))).scalars().all()
    for team_id in owned:
        await purge_team(db, team_id)

    cancelled = await release_registrations(db, Registration.user_id == user_id)
    await db.execute(delete(TeamMember).where(TeamMember.user_id == user_id))
    await db.execute(delete(NotificationRead).where(NotificationRead.user_id == user_id))
    await db.execute(delete(NotificationRecipient).where(NotificationRecipient.user_id == user_id))
    personal = select(Notification.id).where(Notification.user_id == user_id)
    await db.execute(delete(NotificationRead).where(NotificationRead.notification_id.in_(personal)))
    await db.execute(delete(Notification).where(Notification.user_id == user_id))
    await db.execute(delete(User).where(User.id == user_id))

    record_admin_action(
        db,
        admin,
        "delete_user",
        target_type="user",
        target_id=user_id,
        detail=f"{user.username}: {len(owned)} teams, {cancelled} other registrations",
    )
    await db.commit()

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from tourneyhub.errors import AuthorizationError, NotFoundError, ValidationError
from tourneyhub.models import Notification, NotificationRead, NotificationRecipient
from tourneyhub.services import notifications as notification_service
from tourneyhub.services.notifications import NotificationCleanup
from tourneyhub.services.registration import register_team
from tourneyhub.utils import utcnow


pytestmark = pytest.mark.anyio


async def _inbox(session_factory, user):
    async with session_factory() as session:
        rows = await notification_service.notifications_for_user(session, user)
    return [(n.title, is_read) for n, is_read in rows]


async def _unread(session_factory, user):
    async with session_factory() as session:
        return await notification_service.unread_count(session, user)


async def test_audiences_control_visibility(session_factory, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")

    async with session_factory() as session:
        await notification_service.send_broadcast(session, title="Everyone", message="hello all")
        await notification_service.send_to_user(session, alice.id, title="Alice only", message="hi")
        _, reached = await notification_service.send_to_users(
            session, [alice.id, bob.id, 9999], title="Group", message="squad up"
        )
    assert reached == 2

    assert {title for title, _ in await _inbox(session_factory, alice)} == {"Everyone", "Alice only", "Group"}
    assert {title for title, _ in await _inbox(session_factory, bob)} == {"Everyone", "Group"}
    assert {title for title, _ in await _inbox(session_factory, carol)} == {"Everyone"}


async def test_group_send_is_one_row(session_factory, make_user):
    users = [await make_user(f"member{i}") for i in range(3)]

    async with session_factory() as session:
        notification, reached = await notification_service.send_to_users(
            session, [u.id for u in users] + [users[0].id], title="Once", message="one row"
        )
        rows = await session.scalar(select(func.count(Notification.id)))
        recipients = await session.scalar(
            select(func.count(NotificationRecipient.id)).where(
                NotificationRecipient.notification_id == notification.id
            )
        )

    assert reached == 3
    assert rows == 1
    assert recipients == 3


async def test_group_send_validation(session_factory):
    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await notification_service.send_to_users(session, [], title="t", message="m")
        with pytest.raises(NotFoundError):
            await notification_service.send_to_users(session, [404, 405], title="t", message="m")
        with pytest.raises(NotFoundError):
            await notification_service.send_to_user(session, 404, title="t", message="m")


async def test_mark_read_is_idempotent(session_factory, make_user):
    reader = await make_user("reader")
    async with session_factory() as session:
        notification = await notification_service.send_broadcast(session, title="News", message="m")

    async with session_factory() as session:
        first = await notification_service.mark_read(session, notification.id, reader)
    async with session_factory() as session:
        second = await notification_service.mark_read(session, notification.id, reader)

    assert first.id == second.id
    async with session_factory() as session:
        reads = await session.scalar(
            select(func.count(NotificationRead.id)).where(NotificationRead.user_id == reader.id)
        )
    assert reads == 1
    assert await _inbox(session_factory, reader) == [("News", True)]


async def test_cannot_mark_someone_elses_notification(session_factory, make_user):
    owner = await make_user("addressee")
    snoop = await make_user("snoop")
    async with session_factory() as session:
        private = await notification_service.send_to_user(session, owner.id, title="Private", message="m")

    async with session_factory() as session:
        with pytest.raises(AuthorizationError):
            await notification_service.mark_read(session, private.id, snoop)
        with pytest.raises(NotFoundError):
            await notification_service.mark_read(session, private.id + 50, owner)


async def test_unread_count_and_mark_all_read(session_factory, make_user):
    user = await make_user("busy")
    other = await make_user("quiet")
    async with session_factory() as session:
        await notification_service.send_broadcast(session, title="B1", message="m")
        await notification_service.send_broadcast(session, title="B2", message="m")
        await notification_service.send_to_user(session, user.id, title="P1", message="m")
        await notification_service.send_to_user(session, other.id, title="P2", message="m")

    assert await _unread(session_factory, user) == 3
    assert await _unread(session_factory, other) == 3

    async with session_factory() as session:
        marked = await notification_service.mark_all_read(session, user)
    assert marked == 3
    assert await _unread(session_factory, user) == 0
    assert await _unread(session_factory, other) == 3

    async with session_factory() as session:
        assert await notification_service.mark_all_read(session, user) == 0


async def test_room_update_goes_to_registrants(session_factory, make_user, make_team, make_tournament):
    owner = await make_user("registrant")
    bystander = await make_user("bystander")
    team = await make_team(owner, "Room Seekers")
    tournament = await make_tournament(title="Night Cup", room_id="R-55", room_password="pw55")

    async with session_factory() as session:
        assert await notification_service.notify_room_update(session, tournament) == 0

    async with session_factory() as session:
        await register_team(session, tournament_id=tournament.id, team_id=team.id, user=owner)

    async with session_factory() as session:
        assert await notification_service.notify_room_update(session, tournament) == 1

    async with session_factory() as session:
        rows = await notification_service.notifications_for_user(session, owner)
    notification, is_read = rows[0]
    assert notification.title == "Room Info Updated - Night Cup"
    assert notification.message == "Room ID: R-55, Password: pw55"
    assert notification.type == "tournament"
    assert notification.related_id == tournament.id
    assert is_read is False
    assert await _inbox(session_factory, bystander) == []


async def test_purge_removes_old_notifications_and_reads(session_factory, make_user):
    user = await make_user("archivist")
    now = utcnow()
    async with session_factory() as session:
        old = Notification(
            audience="broadcast",
            title="Old",
            message="m",
            type="general",
            created_at=now - timedelta(hours=48),
        )
        fresh = Notification(
            audience="broadcast",
            title="Fresh",
            message="m",
            type="general",
            created_at=now - timedelta(hours=1),
        )
        session.add_all([old, fresh])
        await session.commit()
        session.add(NotificationRead(user_id=user.id, notification_id=old.id))
        await session.commit()

    cleanup = NotificationCleanup(session_factory, retention_hours=24, interval_seconds=0)
    removed = await cleanup.run_once(now=now)

    assert removed == 1
    assert await _inbox(session_factory, user) == [("Fresh", False)]
    async with session_factory() as session:
        assert await session.scalar(select(func.count(NotificationRead.id))) == 0

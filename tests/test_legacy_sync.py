import pytest
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import create_async_engine

from tourneyhub.legacy_sync import LegacySync, map_notification, map_team_member, map_tournament
from tourneyhub.models import Notification, Registration, Team, TeamMember, Tournament, User
from tourneyhub.services.notifications import unread_count


pytestmark = pytest.mark.anyio

LEGACY_HASH = "ab" * 64 + ".salt"

_LEGACY_DDL = [
    """
    CREATE TABLE profiles (
        id INTEGER PRIMARY KEY,
        username TEXT,
        email TEXT,
        phone TEXT,
        game_id TEXT,
        password TEXT,
        role TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE teams (
        id INTEGER PRIMARY KEY,
        name TEXT,
        description TEXT,
        owner_id INTEGER,
        game_type TEXT,
        invite_code TEXT
    )
    """,
    """
    CREATE TABLE team_members (
        id INTEGER PRIMARY KEY,
        team_id INTEGER,
        username TEXT,
        game_id TEXT,
        role TEXT
    )
    """,
    """
    CREATE TABLE tournaments (
        id INTEGER PRIMARY KEY,
        title TEXT,
        date TEXT,
        map_type TEXT,
        game_mode TEXT,
        game_type TEXT,
        total_slots INTEGER,
        room_id TEXT,
        password TEXT,
        status TEXT
    )
    """,
    """
    CREATE TABLE registrations (
        id INTEGER PRIMARY KEY,
        tournament_id INTEGER,
        team_id INTEGER,
        user_id INTEGER,
        slot INTEGER,
        status TEXT
    )
    """,
    """
    CREATE TABLE notifications (
        id INTEGER PRIMARY KEY,
        user_id INTEGER,
        title TEXT,
        message TEXT,
        type TEXT,
        is_read INTEGER,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE notification_reads (
        id INTEGER PRIMARY KEY,
        user_id INTEGER,
        notification_id INTEGER
    )
    """,
]

_LEGACY_ROWS = [
    f"INSERT INTO profiles VALUES (10, 'alice', 'alice@example.com', NULL, 'alice-ign', '{LEGACY_HASH}', 'user', '2024-05-01T10:00:00Z')",
    "INSERT INTO profiles VALUES (11, 'bob', 'bob-legacy@example.com', NULL, 'bob-ign', 'x', 'admin', NULL)",
    "INSERT INTO teams VALUES (20, 'Legacy Lions', 'old team', 10, 'bgmi', '123456')",
    "INSERT INTO teams VALUES (21, 'Orphans', '', 11, 'BGMI', '654321')",
    "INSERT INTO team_members VALUES (30, 20, 'alice', 'alice-ign', 'captain')",
    "INSERT INTO team_members VALUES (31, 20, 'guesty', 'g-1', 'captain')",
    "INSERT INTO team_members VALUES (32, 99, 'lost', 'l-1', 'member')",
    "INSERT INTO tournaments VALUES (40, 'Legacy Cup', '2024-06-01T18:00:00Z', 'Erangel', 'Squad', 'BGMI', 1, 'R1', 'pw', 'completed')",
    "INSERT INTO registrations VALUES (50, 40, 20, 10, NULL, 'confirmed')",
    "INSERT INTO registrations VALUES (51, 40, 21, 11, 2, 'pending')",
    "INSERT INTO notifications VALUES (60, 10, 'Welcome', 'hi alice', 'personal', 1, '2024-05-02T00:00:00Z')",
    "INSERT INTO notifications VALUES (61, NULL, 'Season', 'starts soon', 'broadcast', 0, '2024-05-03T00:00:00Z')",
    "INSERT INTO notification_reads VALUES (70, 10, 61)",
]


@pytest.fixture
async def legacy(tmp_path):
    source_engine = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'legacy.db').as_posix()}")
    async with source_engine.begin() as conn:
        for ddl in _LEGACY_DDL:
            await conn.exec_driver_sql(ddl)
        for row in _LEGACY_ROWS:
            await conn.execute(text(row))
    async with source_engine.connect() as conn:
        yield conn
    await source_engine.dispose()


def test_mappers_normalize_legacy_fields():
    member = map_team_member({"id": 1, "teamId": 2, "username": "Alice", "role": "member"}, {"alice": 7})
    assert member["user_id"] == 7
    assert member["display_name"] == "Alice"

    tournament = map_tournament({"id": 3, "title": "T", "date": "2024-01-01T00:00:00Z", "status": "paused"})
    assert tournament["status"] == "upcoming"
    assert tournament["date"].tzinfo is None

    assert map_notification({"id": 4, "title": "t", "message": "m"})["audience"] == "broadcast"
    assert map_notification({"id": 5, "userId": 9, "title": "t", "message": "m"})["audience"] == "user"


async def test_sync_copies_rows_and_reports_conflicts(legacy, session_factory, make_user):
    await make_user("bob")

    async with session_factory() as session:
        report = await LegacySync(legacy, session).run()

    assert report.table("users").copied == 1
    assert report.table("users").conflicts == 1
    assert report.table("teams").copied == 1
    assert report.table("teams").skipped == 1
    assert report.table("team_members").copied == 2
    assert report.table("team_members").skipped == 1
    assert report.table("registrations").copied == 1
    assert report.table("registrations").skipped == 1
    assert report.table("notifications").copied == 2
    assert report.table("notification_reads").copied == 1
    assert "users: 1 copied, 1 conflicts" in report.summary()

    async with session_factory() as session:
        alice = await session.get(User, 10)
        assert alice.password_hash == LEGACY_HASH
        assert alice.game_id == "alice-ign"

        team = await session.get(Team, 20)
        assert team.game_type == "BGMI"

        roles = (
            await session.execute(
                select(TeamMember.display_name, TeamMember.user_id, TeamMember.role)
                .where(TeamMember.team_id == 20)
                .order_by(TeamMember.id)
            )
        ).all()
        assert roles == [("alice", 10, "captain"), ("guesty", None, "member")]

        tournament = await session.get(Tournament, 40)
        assert tournament.registered_count == 1
        assert tournament.next_slot == 1
        assert tournament.room_password == "pw"

        registration = await session.scalar(select(Registration).where(Registration.id == 50))
        assert registration.slot == 1

        assert await unread_count(session, alice) == 0


async def test_sync_is_idempotent(legacy, session_factory):
    async with session_factory() as session:
        await LegacySync(legacy, session).run()
    async with session_factory() as session:
        second = await LegacySync(legacy, session).run()

    assert all(r.copied == 0 for r in second.tables.values())
    assert second.table("users").conflicts == 2


async def test_dry_run_writes_nothing(legacy, session_factory):
    async with session_factory() as session:
        report = await LegacySync(legacy, session, dry_run=True).run()

    assert report.dry_run is True
    assert report.table("users").copied == 2
    assert report.summary().startswith("[dry run] ")
    async with session_factory() as session:
        assert await session.scalar(select(func.count(User.id))) == 0
        assert await session.scalar(select(func.count(Notification.id))) == 0

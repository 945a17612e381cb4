from datetime import timedelta

import pytest

from tourneyhub import database
from tourneyhub.models import Team, TeamMember, Tournament, User
from tourneyhub.utils import generate_invite_code, utcnow


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{(tmp_path / 'tourneyhub-test.db').as_posix()}"


@pytest.fixture
async def engine(db_url):
    bind = database._build_engine(db_url)
    await database.init_models(bind)
    yield bind
    await bind.dispose()


@pytest.fixture
def session_factory(engine):
    return database._build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session_factory):
    async def _make(username, *, role="user", game_id=None, email=None, password_hash="!"):
        async with session_factory() as session:
            user = User(
                username=username,
                email=email or f"{username}@example.com",
                game_id=game_id or f"{username}-gid",
                password_hash=password_hash,
                role=role,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


@pytest.fixture
def make_team(session_factory):
    """A team owned by ``owner`` with the owner as captain plus ``guests`` guest entries."""

    async def _make(owner, name, *, guests=0, game_type="BGMI"):
        async with session_factory() as session:
            team = Team(
                name=name,
                description="",
                owner_id=owner.id,
                game_type=game_type,
                invite_code=generate_invite_code(),
            )
            session.add(team)
            await session.flush()
            session.add(
                TeamMember(
                    team_id=team.id,
                    user_id=owner.id,
                    display_name=owner.username,
                    game_id=owner.game_id,
                    role="captain",
                )
            )
            for i in range(guests):
                session.add(
                    TeamMember(
                        team_id=team.id,
                        display_name=f"{name}-guest-{i}",
                        game_id=f"{name}-g{i}",
                        role="member",
                    )
                )
            await session.commit()
            await session.refresh(team)
            return team

    return _make


@pytest.fixture
def make_tournament(session_factory):
    async def _make(
        *,
        title="Weekend Cup",
        total_slots=10,
        game_mode="Solo",
        game_type="BGMI",
        status="upcoming",
        starts_in=timedelta(days=1),
        ends_at=None,
        room_id=None,
        room_password=None,
    ):
        async with session_factory() as session:
            tournament = Tournament(
                title=title,
                description="",
                date=utcnow() + starts_in,
                ends_at=ends_at,
                map_type="Erangel",
                game_mode=game_mode,
                team_type=game_mode,
                game_type=game_type,
                is_paid=False,
                entry_fee=0,
                prize_pool=1000,
                total_slots=total_slots,
                registered_count=0,
                next_slot=0,
                status=status,
                room_id=room_id,
                room_password=room_password,
            )
            session.add(tournament)
            await session.commit()
            await session.refresh(tournament)
            return tournament

    return _make

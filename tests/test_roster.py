import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tourneyhub.errors import (
    ConflictError,
    NameTaken,
    NotAuthorized,
    NotFoundError,
    TeamFull,
    ValidationError,
)
from tourneyhub.models import Team, TeamMember
from tourneyhub.schemas import GuestMemberIn, PlatformMemberIn, TeamCreate
from tourneyhub.services import roster


pytestmark = pytest.mark.anyio


async def _create(session_factory, owner, name, **kwargs):
    async with session_factory() as session:
        return await roster.create_team(session, owner, TeamCreate(name=name, **kwargs))


async def _add(session_factory, team_id, member, actor):
    async with session_factory() as session:
        return await roster.add_member(session, team_id, member, actor)


async def test_create_team_makes_owner_captain(session_factory, make_user):
    owner = await make_user("founder")

    team = await _create(session_factory, owner, "Founders", description="first team")

    assert team.owner_id == owner.id
    assert len(team.invite_code) == 6 and team.invite_code.isdigit()
    async with session_factory() as session:
        members = await roster.members_for_team(session, team.id)
    assert [(m.user_id, m.role) for m in members] == [(owner.id, "captain")]


async def test_team_names_are_unique_case_insensitive(session_factory, make_user):
    owner = await make_user("namer")
    await _create(session_factory, owner, "Night Owls")

    with pytest.raises(NameTaken):
        await _create(session_factory, owner, "night owls")


async def test_team_count_per_owner_is_capped(session_factory, make_user, monkeypatch):
    monkeypatch.setenv("MAX_TEAMS_PER_USER", "2")
    owner = await make_user("collector")
    await _create(session_factory, owner, "One")
    await _create(session_factory, owner, "Two")

    with pytest.raises(ConflictError):
        await _create(session_factory, owner, "Three")


async def test_roster_cap_is_enforced(session_factory, make_user):
    owner = await make_user("stacker")
    team = await _create(session_factory, owner, "Stack")

    for i in range(3):
        await _add(
            session_factory,
            team.id,
            GuestMemberIn(display_name=f"Guest {i}", game_id=f"gid-{i}"),
            owner,
        )

    with pytest.raises(TeamFull):
        await _add(session_factory, team.id, GuestMemberIn(display_name="Extra", game_id="gid-x"), owner)

    async with session_factory() as session:
        assert len(await roster.members_for_team(session, team.id)) == 4


async def test_roster_cap_follows_game_override(session_factory, make_user, monkeypatch):
    monkeypatch.setenv("ROSTER_CAP_COD", "2")
    owner = await make_user("codplayer")
    team = await _create(session_factory, owner, "COD Crew", game_type="COD")

    await _add(session_factory, team.id, GuestMemberIn(display_name="Mate", game_id="m-1"), owner)
    with pytest.raises(TeamFull):
        await _add(session_factory, team.id, GuestMemberIn(display_name="Third", game_id="m-2"), owner)


async def test_platform_member_links_user(session_factory, make_user):
    owner = await make_user("recruiter")
    recruit = await make_user("recruit", game_id="recruit-ign")
    team = await _create(session_factory, owner, "Recruiters")

    member = await _add(session_factory, team.id, PlatformMemberIn(username="RECRUIT"), owner)

    assert member.user_id == recruit.id
    assert member.kind == "user"
    assert member.display_name == "recruit"
    assert member.game_id == "recruit-ign"

    with pytest.raises(ConflictError):
        await _add(session_factory, team.id, PlatformMemberIn(username="recruit"), owner)


async def test_unknown_platform_member(session_factory, make_user):
    owner = await make_user("seeker")
    team = await _create(session_factory, owner, "Seekers")

    with pytest.raises(NotFoundError):
        await _add(session_factory, team.id, PlatformMemberIn(username="nobody"), owner)


async def test_guest_member_has_no_account(session_factory, make_user):
    owner = await make_user("host")
    team = await _create(session_factory, owner, "Hosts")

    guest = await _add(session_factory, team.id, GuestMemberIn(display_name="Walk In", game_id="wi-9"), owner)

    assert guest.user_id is None
    assert guest.kind == "guest"
    with pytest.raises(ConflictError):
        await _add(session_factory, team.id, GuestMemberIn(display_name="walk in", game_id="wi-10"), owner)


async def test_username_must_differ_from_game_id(session_factory, make_user):
    owner = await make_user("mirror")
    team = await _create(session_factory, owner, "Mirrors")

    with pytest.raises(ValidationError):
        await _add(session_factory, team.id, GuestMemberIn(display_name="Echo", game_id="echo"), owner)


async def test_only_one_captain(session_factory, make_user):
    owner = await make_user("chief")
    team = await _create(session_factory, owner, "Chiefs")

    with pytest.raises(ConflictError):
        await _add(
            session_factory,
            team.id,
            GuestMemberIn(display_name="Usurper", game_id="u-1", role="captain"),
            owner,
        )

    member = await _add(session_factory, team.id, GuestMemberIn(display_name="Deputy", game_id="d-1"), owner)
    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await roster.set_member_role(session, member.id, "captain", owner)


async def test_captain_index_rejects_direct_second_captain(session_factory, make_user):
    owner = await make_user("indexed")
    team = await _create(session_factory, owner, "Indexed")

    async with session_factory() as session:
        session.add(TeamMember(team_id=team.id, display_name="Rogue", game_id="r-1", role="captain"))
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_outsider_cannot_manage_roster(session_factory, make_user):
    owner = await make_user("gatekeeper")
    outsider = await make_user("outsider")
    team = await _create(session_factory, owner, "Gated")

    with pytest.raises(NotAuthorized):
        await _add(session_factory, team.id, GuestMemberIn(display_name="Sneak", game_id="s-1"), outsider)


async def test_join_by_invite_code(session_factory, make_user):
    owner = await make_user("inviter")
    joiner = await make_user("joiner")
    team = await _create(session_factory, owner, "Open Door")

    async with session_factory() as session:
        member, joined = await roster.join_by_invite_code(session, joiner, team.invite_code)

    assert joined.id == team.id
    assert member.user_id == joiner.id
    assert member.role == "member"

    async with session_factory() as session:
        with pytest.raises(ConflictError):
            await roster.join_by_invite_code(session, joiner, team.invite_code)
        with pytest.raises(NotFoundError):
            await roster.join_by_invite_code(session, joiner, "000000")

    async with session_factory() as session:
        mine = await roster.teams_for_user(session, joiner)
    assert [t.id for t in mine] == [team.id]


async def test_member_can_leave_but_owner_cannot_be_removed(session_factory, make_user):
    owner = await make_user("landlord")
    tenant = await make_user("tenant")
    team = await _create(session_factory, owner, "Lodgers")
    async with session_factory() as session:
        member, _ = await roster.join_by_invite_code(session, tenant, team.invite_code)

    async with session_factory() as session:
        await roster.remove_member(session, member.id, tenant)

    async with session_factory() as session:
        captain = await session.scalar(
            select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.role == "captain")
        )
    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await roster.remove_member(session, captain.id, owner)


async def test_delete_team_requires_owner(session_factory, make_user):
    owner = await make_user("builder")
    other = await make_user("wrecker")
    admin = await make_user("inspector", role="admin")
    team = await _create(session_factory, owner, "Buildings")

    async with session_factory() as session:
        with pytest.raises(NotAuthorized):
            await roster.delete_team(session, team.id, other)

    async with session_factory() as session:
        await roster.delete_team(session, team.id, admin)

    async with session_factory() as session:
        assert await session.get(Team, team.id) is None
        assert await roster.members_for_team(session, team.id) == []


async def test_uncommitted_changes_roll_back_with_caller(session_factory, make_user):
    owner = await make_user("skipper")
    team = await _create(session_factory, owner, "Drafts")

    async with session_factory() as session:
        member = await roster.add_member(
            session, team.id, GuestMemberIn(display_name="Maybe", game_id="may-1"), owner, commit=False
        )
        assert member.id is not None
        await roster.delete_team(session, team.id, owner, commit=False)
        await session.rollback()

    async with session_factory() as session:
        assert await session.get(Team, team.id) is not None
        names = (
            await session.scalars(select(TeamMember.display_name).where(TeamMember.team_id == team.id))
        ).all()
    assert names == ["skipper"]

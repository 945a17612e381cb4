"""Team roster management: creation, invite codes, members, captains."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.errors import (
    ConflictError,
    NameTaken,
    NotAuthorized,
    NotFoundError,
    TeamFull,
    TransientError,
    ValidationError,
)
from tourneyhub.games import roster_cap
from tourneyhub.models.registration import Registration
from tourneyhub.models.team import Team
from tourneyhub.models.team_member import TeamMember
from tourneyhub.models.user import User
from tourneyhub.schemas import GuestMemberIn, PlatformMemberIn, TeamCreate
from tourneyhub.services.registration import release_registrations
from tourneyhub.utils import generate_invite_code

_LOGGER = logging.getLogger(__name__)

INVITE_CODE_ATTEMPTS = 10


def max_teams_per_user() -> int:
    try:
        return max(1, int(os.getenv("MAX_TEAMS_PER_USER", "3")))
    except ValueError:
        return 3


async def is_captain(db: AsyncSession, team_id: int, user_id: int) -> bool:
    found = await db.scalar(
        select(TeamMember.id).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
            TeamMember.role == "captain",
        )
    )
    return found is not None


async def can_manage(db: AsyncSession, team: Team, user: User) -> bool:
    if user.is_admin or team.owner_id == user.id:
        return True
    return await is_captain(db, team.id, user.id)


async def _unique_invite_code(db: AsyncSession) -> str:
    for _ in range(INVITE_CODE_ATTEMPTS):
        code = generate_invite_code()
        taken = await db.scalar(select(Team.id).where(Team.invite_code == code))
        if taken is None:
            return code
    raise TransientError("Could not generate a unique invite code, please retry")


async def _finish(db: AsyncSession, commit: bool) -> None:
    # commit=False leaves the transaction open so callers can add an audit row to it.
    await db.flush()
    if commit:
        await db.commit()


async def create_team(db: AsyncSession, owner: User, payload: TeamCreate, *, commit: bool = True) -> Team:
    """Create a team owned by ``owner``, who joins the roster as captain."""

    owned = await db.scalar(select(func.count(Team.id)).where(Team.owner_id == owner.id)) or 0
    limit = max_teams_per_user()
    if owned >= limit:
        raise ConflictError(f"You can own at most {limit} teams")

    taken = await db.scalar(select(Team.id).where(func.lower(Team.name) == payload.name.lower()))
    if taken is not None:
        raise NameTaken("Team name already exists")

    team = Team(
        name=payload.name,
        description=payload.description or "",
        owner_id=owner.id,
        game_type=payload.game_type.value,
        invite_code=await _unique_invite_code(db),
    )
    db.add(team)
    try:
        await db.flush()
        db.add(
            TeamMember(
                team_id=team.id,
                user_id=owner.id,
                display_name=owner.username,
                game_id=owner.game_id or "",
                role="captain",
            )
        )
        await _finish(db, commit)
    except IntegrityError:
        await db.rollback()
        raise NameTaken("Team name already exists")

    await db.refresh(team)
    _LOGGER.info("Team %s (%s) created by user %s", team.id, team.name, owner.id)
    return team


async def get_team(db: AsyncSession, team_id: int) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found")
    return team


async def get_team_by_code(db: AsyncSession, code: str) -> Team:
    team = await db.scalar(select(Team).where(Team.invite_code == code.strip()))
    if team is None:
        raise NotFoundError("No team with that invite code")
    return team


async def members_for_team(db: AsyncSession, team_id: int) -> list[TeamMember]:
    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team_id).order_by(TeamMember.id)
    )
    return list(result.scalars().all())


async def teams_for_user(db: AsyncSession, user: User) -> list[Team]:
    member_of = select(TeamMember.team_id).where(TeamMember.user_id == user.id)
    result = await db.execute(
        select(Team)
        .where(or_(Team.owner_id == user.id, Team.id.in_(member_of)))
        .order_by(Team.created_at.desc(), Team.id.desc())
    )
    return list(result.scalars().unique().all())


async def _lock_team(db: AsyncSession, team_id: int) -> Team:
    # FOR UPDATE is a no-op on SQLite, where BEGIN IMMEDIATE already serializes writers.
    team = await db.scalar(select(Team).where(Team.id == team_id).with_for_update())
    if team is None:
        raise NotFoundError("Team not found")
    return team


async def _insert_member(db: AsyncSession, team: Team, member: TeamMember, *, commit: bool = True) -> TeamMember:
    count = await db.scalar(
        select(func.count(TeamMember.id)).where(TeamMember.team_id == team.id)
    ) or 0
    cap = roster_cap(team.game_type)
    if count >= cap:
        raise TeamFull(f"Team is full ({cap} members max for {team.game_type})")

    if member.user_id is not None:
        dup = await db.scalar(
            select(TeamMember.id).where(
                TeamMember.team_id == team.id, TeamMember.user_id == member.user_id
            )
        )
        if dup is not None:
            raise ConflictError("User is already on this team")
    else:
        dup = await db.scalar(
            select(TeamMember.id).where(
                TeamMember.team_id == team.id,
                TeamMember.user_id.is_(None),
                func.lower(TeamMember.display_name) == member.display_name.lower(),
            )
        )
        if dup is not None:
            raise ConflictError("A player with that name is already on this team")

    if member.role == "captain" and await _captain_id(db, team.id) is not None:
        raise ConflictError("Team already has a captain")

    db.add(member)
    try:
        await _finish(db, commit)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Member conflicts with the existing roster")
    await db.refresh(member)
    return member


async def _captain_id(db: AsyncSession, team_id: int) -> Optional[int]:
    return await db.scalar(
        select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.role == "captain")
    )


def _check_name_vs_game_id(name: str, game_id: Optional[str]) -> None:
    if game_id and name.strip().lower() == game_id.strip().lower():
        raise ValidationError("Username and game ID must be different")


async def add_member(
    db: AsyncSession,
    team_id: int,
    member: Union[PlatformMemberIn, GuestMemberIn],
    actor: User,
    *,
    commit: bool = True,
) -> TeamMember:
    """Add a platform user or a guest entry to the roster, respecting the game cap."""

    team = await _lock_team(db, team_id)
    if not await can_manage(db, team, actor):
        raise NotAuthorized("Only the team owner or captain can add members")

    if isinstance(member, PlatformMemberIn):
        user = await db.scalar(
            select(User).where(func.lower(User.username) == member.username.lower())
        )
        if user is None:
            raise NotFoundError(f"No user named {member.username}")
        game_id = member.game_id or user.game_id or ""
        _check_name_vs_game_id(user.username, game_id)
        entry = TeamMember(
            team_id=team.id,
            user_id=user.id,
            display_name=user.username,
            game_id=game_id,
            role=member.role,
        )
    else:
        _check_name_vs_game_id(member.display_name, member.game_id)
        entry = TeamMember(
            team_id=team.id,
            user_id=None,
            display_name=member.display_name,
            game_id=member.game_id,
            role=member.role,
        )

    added = await _insert_member(db, team, entry, commit=commit)
    _LOGGER.info("Added %s member %s to team %s", added.kind, added.id, team.id)
    return added


async def join_by_invite_code(db: AsyncSession, user: User, code: str) -> tuple[TeamMember, Team]:
    found = await get_team_by_code(db, code)
    team = await _lock_team(db, found.id)
    member = await _insert_member(
        db,
        team,
        TeamMember(
            team_id=team.id,
            user_id=user.id,
            display_name=user.username,
            game_id=user.game_id or "",
            role="member",
        ),
    )
    _LOGGER.info("User %s joined team %s by invite code", user.id, team.id)
    return member, team


async def remove_member(db: AsyncSession, member_id: int, actor: User, *, commit: bool = True) -> TeamMember:
    """Remove a roster entry. Members may remove themselves."""

    member = await db.get(TeamMember, member_id)
    if member is None:
        raise NotFoundError("Team member not found")
    team = await get_team(db, member.team_id)

    leaving = member.user_id is not None and member.user_id == actor.id
    if not leaving and not await can_manage(db, team, actor):
        raise NotAuthorized("Only the team owner or captain can remove members")
    if member.user_id is not None and member.user_id == team.owner_id:
        raise ValidationError("The team owner cannot be removed; delete the team instead")

    await db.execute(delete(TeamMember).where(TeamMember.id == member.id))
    await _finish(db, commit)
    _LOGGER.info("Removed member %s from team %s", member_id, team.id)
    return member


async def set_member_role(db: AsyncSession, member_id: int, role: str, actor: User) -> TeamMember:
    member = await db.get(TeamMember, member_id)
    if member is None:
        raise NotFoundError("Team member not found")
    team = await _lock_team(db, member.team_id)
    if not await can_manage(db, team, actor):
        raise NotAuthorized("Only the team owner or captain can change roles")

    if role == "captain":
        current = await _captain_id(db, team.id)
        if current is not None and current != member.id:
            raise ConflictError("Team already has a captain")

    member.role = role
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Team already has a captain")
    await db.refresh(member)
    return member


async def delete_team(db: AsyncSession, team_id: int, actor: User, *, commit: bool = True) -> None:
    """Delete a team with its roster and registrations, freeing tournament capacity."""

    team = await get_team(db, team_id)
    if not (actor.is_admin or team.owner_id == actor.id):
        raise NotAuthorized("Only the team owner or an admin can delete this team")

    await purge_team(db, team.id)
    await _finish(db, commit)
    _LOGGER.info("Team %s deleted by user %s", team_id, actor.id)


async def purge_team(db: AsyncSession, team_id: int) -> None:
    """Remove a team and everything hanging off it without committing."""

    await release_registrations(db, Registration.team_id == team_id)
    await db.execute(delete(TeamMember).where(TeamMember.team_id == team_id))
    await db.execute(delete(Team).where(Team.id == team_id))

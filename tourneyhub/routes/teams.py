# tourneyhub/routes/teams.py

import logging
from typing import List

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.auth_token import get_current_user
from tourneyhub.database import get_db
from tourneyhub.models.team import Team
from tourneyhub.models.user import User
from tourneyhub.schemas import (
    JoinTeamResult,
    MemberIn,
    MemberRoleUpdate,
    TeamCreate,
    TeamDetail,
    TeamJoin,
    TeamMemberRead,
    TeamRead,
)
from tourneyhub.services import roster

logger = logging.getLogger("teams")

router = APIRouter(prefix="/teams", tags=["Teams"])


async def team_detail(db: AsyncSession, team: Team) -> TeamDetail:
    members = await roster.members_for_team(db, team.id)
    return TeamDetail(
        **TeamRead.model_validate(team).model_dump(),
        members=[TeamMemberRead.model_validate(m) for m in members],
    )


# Create team --------------------------------------------------------

@router.post("", response_model=TeamDetail, status_code=status.HTTP_201_CREATED)
@router.post("/my", response_model=TeamDetail, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: TeamCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    team = await roster.create_team(db, user, payload)
    return await team_detail(db, team)


# List / read --------------------------------------------------------

@router.get("/my", response_model=List[TeamDetail])
async def my_teams(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    teams = await roster.teams_for_user(db, user)
    return [await team_detail(db, team) for team in teams]


@router.get("/code/{invite_code}", response_model=TeamRead)
async def team_by_code(
    invite_code: str,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    team = await roster.get_team_by_code(db, invite_code)
    return TeamRead.model_validate(team)


@router.post("/join", response_model=JoinTeamResult)
async def join_team(
    payload: TeamJoin,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    member, team = await roster.join_by_invite_code(db, user, payload.invite_code)
    return JoinTeamResult(
        member=TeamMemberRead.model_validate(member),
        team=TeamRead.model_validate(team),
    )


@router.get("/{team_id}", response_model=TeamDetail)
async def get_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    team = await roster.get_team(db, team_id)
    return await team_detail(db, team)


# Members ------------------------------------------------------------

@router.get("/{team_id}/members", response_model=List[TeamMemberRead])
async def list_members(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await roster.get_team(db, team_id)
    members = await roster.members_for_team(db, team_id)
    return [TeamMemberRead.model_validate(m) for m in members]


@router.post("/{team_id}/members", response_model=TeamMemberRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    team_id: int,
    payload: MemberIn = Body(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    member = await roster.add_member(db, team_id, payload, user)
    return TeamMemberRead.model_validate(member)


@router.patch("/members/{member_id}", response_model=TeamMemberRead)
async def update_member_role(
    member_id: int,
    payload: MemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    member = await roster.set_member_role(db, member_id, payload.role, user)
    return TeamMemberRead.model_validate(member)


@router.delete("/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    member_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> None:
    await roster.remove_member(db, member_id, user)
    return None


# Delete team --------------------------------------------------------

@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> None:
    await roster.delete_team(db, team_id, user)
    return None

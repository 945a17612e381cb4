"""Admin endpoints for managing teams and rosters.

Each mutation and its audit row are committed together.
"""

from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.database import get_db
from tourneyhub.deps.security import require_admin
from tourneyhub.models.team import Team
from tourneyhub.models.team_member import TeamMember
from tourneyhub.models.user import User
from tourneyhub.routes.teams import team_detail
from tourneyhub.schemas import AdminTeamCreate, MemberIn, TeamDetail, TeamMemberRead
from tourneyhub.services import accounts, roster

router = APIRouter(prefix="/admin/teams", tags=["Admin: Teams"])


@router.get("", response_model=List[TeamDetail])
async def list_teams(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[TeamDetail]:
    rows = await db.execute(select(Team).order_by(Team.id))
    return [await team_detail(db, team) for team in rows.scalars().all()]


@router.post("", response_model=TeamDetail, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: AdminTeamCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> TeamDetail:
    owner = await db.get(User, payload.owner_id)
    if owner is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Owner not found")
    team = await roster.create_team(db, owner, payload, commit=False)
    accounts.record_admin_action(
        db, admin, "create_team", target_type="team", target_id=team.id,
        detail=f"{team.name} for user {owner.id}",
    )
    await db.commit()
    return await team_detail(db, team)


@router.get("/{team_id}", response_model=TeamDetail)
async def get_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> TeamDetail:
    return await team_detail(db, await roster.get_team(db, team_id))


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> None:
    team = await roster.get_team(db, team_id)
    name = team.name
    await roster.delete_team(db, team_id, admin, commit=False)
    accounts.record_admin_action(
        db, admin, "delete_team", target_type="team", target_id=team_id, detail=name
    )
    await db.commit()
    return None


@router.get("/{team_id}/members", response_model=List[TeamMemberRead])
async def list_members(
    team_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[TeamMemberRead]:
    await roster.get_team(db, team_id)
    return [TeamMemberRead.model_validate(m) for m in await roster.members_for_team(db, team_id)]


@router.post("/{team_id}/members", response_model=TeamMemberRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    team_id: int,
    payload: MemberIn = Body(...),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> TeamMemberRead:
    member = await roster.add_member(db, team_id, payload, admin, commit=False)
    accounts.record_admin_action(
        db, admin, "add_team_member", target_type="team", target_id=team_id,
        detail=f"{member.kind}:{member.display_name}",
    )
    await db.commit()
    return TeamMemberRead.model_validate(member)


@router.delete("/{team_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    team_id: int,
    member_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> None:
    member = await db.get(TeamMember, member_id)
    if member is None or member.team_id != team_id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Team member not found")
    await roster.remove_member(db, member_id, admin, commit=False)
    accounts.record_admin_action(
        db, admin, "remove_team_member", target_type="team", target_id=team_id,
        detail=f"member {member_id}",
    )
    await db.commit()
    return None

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.auth_token import get_current_user
from tourneyhub.database import get_db
from tourneyhub.models.user import User
from tourneyhub.schemas import TeamRead, TournamentRead, UserRegistrationRead
from tourneyhub.services import registration

logger = logging.getLogger("registrations")

router = APIRouter(prefix="/registrations", tags=["Registrations"])


@router.get("/user", response_model=List[UserRegistrationRead])
async def my_registrations(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = await registration.registrations_for_user(db, user)
    return [
        UserRegistrationRead(
            id=r.id,
            tournament_id=r.tournament_id,
            team_id=r.team_id,
            user_id=r.user_id,
            slot=r.slot,
            status=r.status,
            payment_status=r.payment_status,
            registered_at=r.registered_at,
            tournament=TournamentRead.for_viewer(r.tournament, user.is_admin) if r.tournament else None,
            team=TeamRead.model_validate(r.team) if r.team else None,
            is_registered_by_me=r.user_id == user.id,
        )
        for r in rows
    ]


@router.get("/counts", response_model=Dict[int, int])
async def registration_counts(db: AsyncSession = Depends(get_db)):
    return await registration.registration_counts(db)


@router.delete("/{registration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_registration(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> None:
    await registration.cancel_registration(db, registration_id=registration_id, user=user)
    return None

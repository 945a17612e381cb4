# tourneyhub/routes/tournaments.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.auth_token import get_current_user, get_optional_user
from tourneyhub.database import get_db
from tourneyhub.deps.security import is_admin, require_admin
from tourneyhub.errors import ValidationError
from tourneyhub.models.registration import Registration
from tourneyhub.models.tournament import Tournament, TournamentStatus
from tourneyhub.models.user import User
from tourneyhub.schemas import (
    RegistrationCreate,
    RegistrationRead,
    RegistrationWithTeam,
    TournamentCreate,
    TournamentRead,
    TournamentUpdate,
)
from tourneyhub.services import notifications, registration
from tourneyhub.services.accounts import record_admin_action

logger = logging.getLogger("tournaments")

router = APIRouter(prefix="/tournaments", tags=["Tournaments"])


async def _get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    tournament = await db.get(Tournament, tournament_id)
    if tournament is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tournament not found")
    return tournament


@router.get("", response_model=List[TournamentRead])
async def list_tournaments(
    status_filter: Optional[TournamentStatus] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    viewer: Optional[User] = Depends(get_optional_user),
):
    stmt = select(Tournament).order_by(Tournament.date.asc(), Tournament.id.asc())
    if status_filter is not None:
        stmt = stmt.where(Tournament.status == status_filter.value)
    rows = (await db.execute(stmt)).scalars().all()
    admin = is_admin(viewer)
    return [TournamentRead.for_viewer(t, admin) for t in rows]


@router.get("/{tournament_id}", response_model=TournamentRead)
async def get_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    viewer: Optional[User] = Depends(get_optional_user),
):
    tournament = await _get_tournament(db, tournament_id)
    return TournamentRead.for_viewer(tournament, is_admin(viewer))


@router.post("", response_model=TournamentRead, status_code=status.HTTP_201_CREATED)
async def create_tournament(
    payload: TournamentCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tournament = Tournament(
        title=payload.title,
        description=payload.description,
        date=payload.date,
        ends_at=payload.ends_at,
        map_type=payload.map_type,
        game_mode=payload.game_mode.value,
        team_type=payload.team_type.value,
        game_type=payload.game_type.value,
        is_paid=payload.is_paid,
        entry_fee=payload.entry_fee if payload.is_paid else 0,
        prize_pool=payload.prize_pool,
        total_slots=payload.total_slots,
        registered_count=0,
        next_slot=0,
        status=TournamentStatus.upcoming.value,
        created_by=admin.id,
    )
    db.add(tournament)
    await db.flush()
    record_admin_action(
        db, admin, "create_tournament", target_type="tournament", target_id=tournament.id,
        detail=tournament.title,
    )
    await db.commit()
    await db.refresh(tournament)
    logger.info("Tournament %s created by admin %s", tournament.id, admin.id)
    return TournamentRead.for_viewer(tournament, True)


@router.patch("/{tournament_id}", response_model=TournamentRead)
async def update_tournament(
    tournament_id: int,
    payload: TournamentUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tournament = await _get_tournament(db, tournament_id)
    changes = payload.model_dump(exclude_unset=True)

    new_status = changes.pop("status", None)
    if new_status is not None:
        current = tournament.status_enum
        if new_status != current and not current.can_advance_to(new_status):
            raise ValidationError(
                f"Tournament status can only move forward (currently {current.value})"
            )

    total_slots = changes.get("total_slots")
    if total_slots is not None and total_slots < (tournament.registered_count or 0):
        raise ValidationError(
            f"total_slots cannot be below the {tournament.registered_count} registered teams"
        )

    start = changes.get("date", tournament.date)
    end = changes.get("ends_at", tournament.ends_at)
    if end is not None and start is not None and end <= start:
        raise ValidationError("ends_at must be after date")

    room_changed = any(
        key in changes and changes[key] and changes[key] != getattr(tournament, key)
        for key in ("room_id", "room_password")
    )

    for key, value in changes.items():
        if hasattr(value, "value"):
            value = value.value
        setattr(tournament, key, value)

    if new_status is not None and new_status != tournament.status_enum:
        # Conditional on the status we validated against so a concurrent
        # status pass cannot be moved backwards.
        result = await db.execute(
            update(Tournament)
            .where(Tournament.id == tournament.id, Tournament.status == tournament.status)
            .values(status=new_status.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Tournament status changed concurrently, reload and retry",
            )

    record_admin_action(
        db, admin, "update_tournament", target_type="tournament", target_id=tournament.id,
        detail=", ".join(sorted(payload.model_dump(exclude_unset=True))),
    )
    await db.commit()
    await db.refresh(tournament)

    if room_changed:
        sent = await notifications.notify_room_update(db, tournament)
        logger.info("Created %s room info notifications for tournament %s", sent, tournament.id)

    return TournamentRead.for_viewer(tournament, True)


@router.delete("/{tournament_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> None:
    tournament = await _get_tournament(db, tournament_id)
    await db.execute(delete(Registration).where(Registration.tournament_id == tournament.id))
    await db.execute(delete(Tournament).where(Tournament.id == tournament.id))
    record_admin_action(
        db, admin, "delete_tournament", target_type="tournament", target_id=tournament_id,
        detail=tournament.title,
    )
    await db.commit()
    return None


@router.post(
    "/{tournament_id}/register",
    response_model=RegistrationRead,
    status_code=status.HTTP_201_CREATED,
)
async def register_for_tournament(
    tournament_id: int,
    payload: RegistrationCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    created = await registration.register_team(
        db, tournament_id=tournament_id, team_id=payload.team_id, user=user
    )
    return RegistrationRead.model_validate(created)


@router.get("/{tournament_id}/registrations", response_model=List[RegistrationWithTeam])
async def list_tournament_registrations(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await _get_tournament(db, tournament_id)
    rows = await registration.registrations_for_tournament(db, tournament_id)
    return [RegistrationWithTeam.model_validate(r) for r in rows]


@router.post("/{tournament_id}/room-notification", status_code=status.HTTP_201_CREATED)
async def send_room_notification(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tournament = await _get_tournament(db, tournament_id)
    sent = await notifications.notify_room_update(db, tournament)
    logger.info("Admin %s sent room info for tournament %s to %s users", admin.id, tournament_id, sent)
    return {"success": True, "notifications_created": sent}

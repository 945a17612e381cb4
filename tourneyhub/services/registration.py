"""Tournament registration: capacity, uniqueness, and slot assignment."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.errors import (
    AlreadyRegistered,
    NotAuthorized,
    NotFoundError,
    TournamentClosed,
    TournamentFull,
    ValidationError,
)
from tourneyhub.games import minimum_roster
from tourneyhub.models.registration import Registration
from tourneyhub.models.team import Team
from tourneyhub.models.team_member import TeamMember
from tourneyhub.models.tournament import Tournament, TournamentStatus
from tourneyhub.models.user import User

_LOGGER = logging.getLogger(__name__)


async def can_act_for_team(db: AsyncSession, team: Team, user: User) -> bool:
    """Owners, captains, and admins may register or cancel for a team."""

    if user.is_admin or team.owner_id == user.id:
        return True
    captain = await db.scalar(
        select(TeamMember.id).where(
            TeamMember.team_id == team.id,
            TeamMember.user_id == user.id,
            TeamMember.role == "captain",
        )
    )
    return captain is not None


async def _claim_slot(db: AsyncSession, tournament_id: int) -> Optional[int]:
    """Atomically take the next slot if capacity remains; None when full or closed."""

    result = await db.execute(
        update(Tournament)
        .where(
            Tournament.id == tournament_id,
            Tournament.registered_count < Tournament.total_slots,
            Tournament.status != TournamentStatus.completed.value,
        )
        .values(
            registered_count=Tournament.registered_count + 1,
            next_slot=Tournament.next_slot + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return await db.scalar(select(Tournament.next_slot).where(Tournament.id == tournament_id))


async def register_team(
    db: AsyncSession,
    *,
    tournament_id: int,
    team_id: int,
    user: User,
) -> Registration:
    """Register ``team_id`` for ``tournament_id`` on behalf of ``user``.

    Raises ``NotFoundError``, ``TournamentClosed``, ``NotAuthorized``,
    ``ValidationError``, ``AlreadyRegistered`` or ``TournamentFull``. At most
    ``total_slots`` registrations can ever exist for one tournament: the
    capacity check and the counter increment are a single conditional UPDATE
    committed together with the insert.
    """

    tournament = await db.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFoundError("Tournament not found")
    if tournament.status == TournamentStatus.completed.value:
        raise TournamentClosed("Tournament has already completed")

    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found")
    if not await can_act_for_team(db, team, user):
        raise NotAuthorized("Only the team owner or captain can register this team")

    roster_size = await db.scalar(
        select(func.count(TeamMember.id)).where(TeamMember.team_id == team.id)
    ) or 0
    required = minimum_roster(tournament.game_mode)
    if roster_size < required:
        raise ValidationError(
            f"{tournament.game_mode} tournaments require at least {required} team members"
        )

    existing = await db.scalar(
        select(Registration.id).where(
            Registration.tournament_id == tournament_id,
            Registration.team_id == team_id,
        )
    )
    if existing is not None:
        raise AlreadyRegistered()

    try:
        slot = await _claim_slot(db, tournament_id)
        if slot is None:
            await db.rollback()
            status = await db.scalar(
                select(Tournament.status).where(Tournament.id == tournament_id)
            )
            if status == TournamentStatus.completed.value:
                raise TournamentClosed("Tournament has already completed")
            raise TournamentFull()

        registration = Registration(
            tournament_id=tournament_id,
            team_id=team_id,
            user_id=user.id,
            slot=slot,
        )
        db.add(registration)
        await db.flush()
        await db.commit()
    except IntegrityError:
        # Lost a race against the same team; the counter bump rolls back with it.
        await db.rollback()
        raise AlreadyRegistered()

    _LOGGER.info(
        "Team %s registered for tournament %s in slot %s", team_id, tournament_id, slot
    )
    await db.refresh(tournament)
    await db.refresh(registration)
    return registration


async def _release(db: AsyncSession, registration: Registration) -> None:
    await db.execute(
        update(Tournament)
        .where(Tournament.id == registration.tournament_id, Tournament.registered_count > 0)
        .values(registered_count=Tournament.registered_count - 1)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(Registration).where(Registration.id == registration.id))


async def cancel_registration(db: AsyncSession, *, registration_id: int, user: User) -> None:
    """Cancel a registration. The slot number is never handed out again."""

    registration = await db.get(Registration, registration_id)
    if registration is None:
        raise NotFoundError("Registration not found")

    allowed = user.is_admin or registration.user_id == user.id
    if not allowed:
        team = await db.get(Team, registration.team_id)
        allowed = team is not None and team.owner_id == user.id
    if not allowed:
        raise NotAuthorized("You did not create this registration")

    await _release(db, registration)
    await db.commit()
    _LOGGER.info(
        "Registration %s for tournament %s cancelled by user %s",
        registration_id,
        registration.tournament_id,
        user.id,
    )


async def release_registrations(db: AsyncSession, *conditions) -> int:
    """Delete registrations matching ``conditions`` and give back their capacity.

    Does not commit; callers delete teams or users in the same transaction.
    """

    rows = (await db.execute(select(Registration).where(*conditions))).scalars().all()
    for registration in rows:
        await _release(db, registration)
    return len(rows)


async def registration_counts(db: AsyncSession) -> dict[int, int]:
    rows = await db.execute(select(Tournament.id, Tournament.registered_count))
    return {tournament_id: count or 0 for tournament_id, count in rows.all()}


async def registrations_for_tournament(db: AsyncSession, tournament_id: int) -> list[Registration]:
    result = await db.execute(
        select(Registration)
        .where(Registration.tournament_id == tournament_id)
        .order_by(Registration.slot)
    )
    return list(result.scalars().all())


async def registrations_for_user(db: AsyncSession, user: User) -> list[Registration]:
    """Registrations the user made plus those of every team they own or play in."""

    member_team_ids = select(TeamMember.team_id).where(TeamMember.user_id == user.id)
    owned_team_ids = select(Team.id).where(Team.owner_id == user.id)
    result = await db.execute(
        select(Registration)
        .where(
            or_(
                Registration.user_id == user.id,
                Registration.team_id.in_(member_team_ids),
                Registration.team_id.in_(owned_team_ids),
            )
        )
        .order_by(Registration.registered_at.desc(), Registration.id.desc())
    )
    return list(result.scalars().unique().all())

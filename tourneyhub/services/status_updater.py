from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourneyhub.games import live_duration
from tourneyhub.models.tournament import Tournament, TournamentStatus
from tourneyhub.utils import utcnow

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StatusPass:
    """Outcome of one status-update pass."""

    checked: int = 0
    changed: dict[int, str] = field(default_factory=dict)
    failed: list[int] = field(default_factory=list)
    skipped: bool = False


class StatusUpdater:
    """Advance tournament status from the schedule: upcoming -> live -> completed.

    Transitions only move forward. Each tournament is updated in its own
    transaction with a conditional UPDATE on the status that was observed, so
    a concurrent admin edit is never overwritten. Passes never overlap.
    """

    def __init__(
        self,
        session_factory,
        *,
        interval_seconds: Optional[int] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else int(os.getenv("TOURNAMENT_STATUS_INTERVAL_SECONDS", "60"))
        )
        self._env = env
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_once(self, now: Optional[datetime] = None) -> StatusPass:
        if self._lock.locked():
            _LOGGER.info("Tournament status pass still running; skipping this tick")
            return StatusPass(skipped=True)

        async with self._lock:
            return await self._run(now or self._clock())

    async def _run(self, now: datetime) -> StatusPass:
        outcome = StatusPass()
        async with self._session_factory() as db:
            rows = await db.execute(
                select(Tournament.id, Tournament.status, Tournament.date, Tournament.ends_at, Tournament.game_type)
                .where(Tournament.status != TournamentStatus.completed.value)
                .order_by(Tournament.date)
            )
            candidates = rows.all()
            await db.rollback()

        for tournament_id, status, start, ends_at, game_type in candidates:
            outcome.checked += 1
            current = TournamentStatus(status)
            target = _target_status(now, start, ends_at, live_duration(game_type, self._env))
            if not current.can_advance_to(target):
                continue
            try:
                async with self._session_factory() as db:
                    if await advance_status(db, tournament_id, current, target):
                        outcome.changed[tournament_id] = target.value
            except asyncio.CancelledError:
                raise
            except Exception:
                _LOGGER.exception("Failed to update status of tournament %s", tournament_id)
                outcome.failed.append(tournament_id)

        if outcome.changed:
            _LOGGER.info("Tournament status pass changed %s", outcome.changed)
        return outcome

    async def start(self) -> None:
        if self.interval_seconds <= 0 or self._task:
            return

        async def _loop():
            while True:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    _LOGGER.exception("Tournament status pass failed: %s", exc)
                await asyncio.sleep(self.interval_seconds)

        self._task = asyncio.create_task(_loop())

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None


def _target_status(now: datetime, start: datetime, ends_at: Optional[datetime], duration) -> TournamentStatus:
    if now < start:
        return TournamentStatus.upcoming
    if now < (ends_at or start + duration):
        return TournamentStatus.live
    return TournamentStatus.completed


async def advance_status(
    db: AsyncSession,
    tournament_id: int,
    observed: TournamentStatus,
    target: TournamentStatus,
) -> bool:
    """Move one tournament from ``observed`` to ``target``; False if someone else got there first."""

    if not observed.can_advance_to(target):
        return False
    result = await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.status == observed.value)
        .values(status=target.value)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


_updater: Optional[StatusUpdater] = None


def get_status_updater(session_factory=None) -> StatusUpdater:
    global _updater
    if _updater is None:
        if session_factory is None:
            from tourneyhub import database

            def session_factory():
                return database.SessionLocal()

        _updater = StatusUpdater(session_factory)
    return _updater

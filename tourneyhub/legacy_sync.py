"""Copy rows from the legacy datastore into the current database.

Tables are copied in dependency order. Rows whose primary key or unique
fields already exist in the target are skipped and counted as conflicts.
Password hashes are copied verbatim; the legacy scrypt format is verified
(and upgraded) at login. Tournament counters are recomputed afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import func, inspect, or_, select, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from tourneyhub.models import (
    Audience,
    Notification,
    NotificationRead,
    Registration,
    Team,
    TeamMember,
    Tournament,
    TournamentStatus,
    User,
)
from tourneyhub.schema_upgrades import recompute_tournament_counters
from tourneyhub.utils import generate_invite_code, naive_utc

logger = logging.getLogger(__name__)

TABLE_ORDER = (
    "users",
    "teams",
    "team_members",
    "tournaments",
    "registrations",
    "notifications",
    "notification_reads",
)

# Source table names to try for each target table, first match wins.
SOURCE_TABLES = {
    "users": ("profiles", "users"),
}


@dataclass
class TableReport:
    copied: int = 0
    conflicts: int = 0
    skipped: int = 0


@dataclass
class SyncReport:
    tables: dict[str, TableReport] = field(default_factory=dict)
    dry_run: bool = False

    def table(self, name: str) -> TableReport:
        return self.tables.setdefault(name, TableReport())

    def summary(self) -> str:
        parts = [
            f"{name}: {r.copied} copied, {r.conflicts} conflicts, {r.skipped} skipped"
            for name, r in self.tables.items()
        ]
        prefix = "[dry run] " if self.dry_run else ""
        return prefix + "; ".join(parts)


def _get(row: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return default


def _dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return naive_utc(value)
    return naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def map_user(row: Mapping[str, Any]) -> dict:
    return {
        "id": row["id"],
        "username": _get(row, "username"),
        "email": _get(row, "email"),
        "phone": _get(row, "phone") or None,
        "game_id": _get(row, "game_id", "gameId", default=""),
        "password_hash": _get(row, "password", "password_hash", default="!"),
        "role": "admin" if _get(row, "role") == "admin" else "user",
        "phone_verified": bool(_get(row, "phone_verified", "phoneVerified", default=False)),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


def map_team(row: Mapping[str, Any]) -> dict:
    return {
        "id": row["id"],
        "name": _get(row, "name"),
        "description": _get(row, "description", default=""),
        "owner_id": _get(row, "owner_id", "ownerId"),
        "game_type": str(_get(row, "game_type", "gameType", default="BGMI")).upper(),
        "invite_code": _get(row, "invite_code", "inviteCode") or generate_invite_code(),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


def map_team_member(row: Mapping[str, Any], user_ids: Mapping[str, int]) -> dict:
    """Legacy members only carry a username; link them to an account when one matches."""

    name = _get(row, "username", "display_name", default="")
    user_id = _get(row, "user_id", "userId")
    if user_id is None:
        user_id = user_ids.get(str(name).lower())
    return {
        "id": row["id"],
        "team_id": _get(row, "team_id", "teamId"),
        "user_id": user_id,
        "display_name": name,
        "game_id": _get(row, "game_id", "gameId", default=""),
        "role": _get(row, "role", default="member"),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


def map_tournament(row: Mapping[str, Any]) -> dict:
    status = _get(row, "status", default=TournamentStatus.upcoming.value)
    if status not in {s.value for s in TournamentStatus}:
        status = TournamentStatus.upcoming.value
    game_mode = _get(row, "game_mode", "gameMode", default="Squad")
    return {
        "id": row["id"],
        "title": _get(row, "title"),
        "description": _get(row, "description", default=""),
        "date": _dt(_get(row, "date")),
        "map_type": _get(row, "map_type", "mapType", default=""),
        "game_mode": game_mode,
        "team_type": _get(row, "team_type", "teamType", default=game_mode),
        "game_type": str(_get(row, "game_type", "gameType", default="BGMI")).upper(),
        "is_paid": bool(_get(row, "is_paid", "isPaid", default=False)),
        "entry_fee": int(_get(row, "entry_fee", "entryFee", default=0)),
        "prize_pool": int(_get(row, "prize_pool", "prizePool", default=0)),
        "total_slots": int(_get(row, "total_slots", "totalSlots", "slots", default=100)),
        "room_id": _get(row, "room_id", "roomId"),
        "room_password": _get(row, "password", "room_password"),
        "status": status,
        "created_by": _get(row, "created_by", "createdBy"),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


def map_registration(row: Mapping[str, Any]) -> dict:
    return {
        "id": row["id"],
        "tournament_id": _get(row, "tournament_id", "tournamentId"),
        "team_id": _get(row, "team_id", "teamId"),
        "user_id": _get(row, "user_id", "userId"),
        "slot": _get(row, "slot"),
        "status": _get(row, "status", default="pending"),
        "payment_status": _get(row, "payment_status", "paymentStatus", default="pending"),
        "registered_at": _dt(_get(row, "registered_at", "registeredAt")),
    }


def map_notification(row: Mapping[str, Any]) -> dict:
    user_id = _get(row, "user_id", "userId")
    return {
        "id": row["id"],
        "audience": Audience.user.value if user_id is not None else Audience.broadcast.value,
        "user_id": user_id,
        "title": _get(row, "title"),
        "message": _get(row, "message"),
        "type": _get(row, "type", default="general"),
        "related_id": _get(row, "related_id", "relatedId"),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


def map_notification_read(row: Mapping[str, Any]) -> dict:
    return {
        "id": row["id"],
        "user_id": _get(row, "user_id", "userId"),
        "notification_id": _get(row, "notification_id", "notificationId"),
        "created_at": _dt(_get(row, "created_at", "createdAt")),
    }


async def _source_table(conn: AsyncConnection, target: str) -> Optional[str]:
    names = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    for candidate in SOURCE_TABLES.get(target, (target,)):
        if candidate in names:
            return candidate
    return None


async def _read_rows(conn: AsyncConnection, table: str) -> list[dict]:
    result = await conn.execute(text(f'SELECT * FROM "{table}" ORDER BY id'))
    return [dict(row) for row in result.mappings().all()]


class LegacySync:
    """Row-by-row copy with per-table conflict rules."""

    def __init__(self, source: AsyncConnection, target: AsyncSession, *, dry_run: bool = False) -> None:
        self.source = source
        self.target = target
        self.report = SyncReport(dry_run=dry_run)
        self._user_ids: dict[str, int] = {}
        self._next_slot: dict[int, int] = {}

    async def run(self) -> SyncReport:
        handlers: dict[str, Callable] = {
            "users": self._copy_user,
            "teams": self._copy_team,
            "team_members": self._copy_team_member,
            "tournaments": self._copy_tournament,
            "registrations": self._copy_registration,
            "notifications": self._copy_notification,
            "notification_reads": self._copy_notification_read,
        }
        for target in TABLE_ORDER:
            source_table = await _source_table(self.source, target)
            if source_table is None:
                logger.info("Legacy table for %s not found; skipping", target)
                continue
            rows = await _read_rows(self.source, source_table)
            report = self.report.table(target)
            for row in rows:
                outcome = await handlers[target](row)
                setattr(report, outcome, getattr(report, outcome) + 1)
                # Later rows are checked against the ones already copied.
                await self.target.flush()
            logger.info("%s <- %s: %s", target, source_table, report)

        conn = await self.target.connection()
        await recompute_tournament_counters(conn)
        if self.report.dry_run:
            await self.target.rollback()
        else:
            await _reset_sequences(self.target)
            await self.target.commit()
        return self.report

    async def _exists(self, model, row_id) -> bool:
        return await self.target.scalar(select(model.id).where(model.id == row_id)) is not None

    async def _copy_user(self, row) -> str:
        data = map_user(row)
        if not data["username"] or not data["email"]:
            return "skipped"
        clash = await self.target.scalar(
            select(User.id).where(
                or_(
                    User.id == data["id"],
                    func.lower(User.username) == data["username"].lower(),
                    func.lower(User.email) == data["email"].lower(),
                    User.phone == data["phone"] if data["phone"] else False,
                )
            )
        )
        if clash is not None:
            return "conflicts"
        self.target.add(User(**data))
        self._user_ids[data["username"].lower()] = data["id"]
        return "copied"

    async def _copy_team(self, row) -> str:
        data = map_team(row)
        if not await self._exists(User, data["owner_id"]):
            return "skipped"
        clash = await self.target.scalar(
            select(Team.id).where(
                or_(
                    Team.id == data["id"],
                    func.lower(Team.name) == str(data["name"]).lower(),
                    Team.invite_code == data["invite_code"],
                )
            )
        )
        if clash is not None:
            return "conflicts"
        self.target.add(Team(**data))
        return "copied"

    async def _copy_team_member(self, row) -> str:
        if not self._user_ids:
            names = await self.target.execute(select(User.username, User.id))
            self._user_ids = {name.lower(): uid for name, uid in names.all()}
        data = map_team_member(row, self._user_ids)
        if not await self._exists(Team, data["team_id"]):
            return "skipped"
        if await self._exists(TeamMember, data["id"]):
            return "conflicts"
        if data["user_id"] is not None:
            dup = await self.target.scalar(
                select(TeamMember.id).where(
                    TeamMember.team_id == data["team_id"], TeamMember.user_id == data["user_id"]
                )
            )
            if dup is not None:
                return "conflicts"
        if data["role"] == "captain":
            captain = await self.target.scalar(
                select(TeamMember.id).where(
                    TeamMember.team_id == data["team_id"], TeamMember.role == "captain"
                )
            )
            if captain is not None:
                data["role"] = "member"
        self.target.add(TeamMember(**data))
        return "copied"

    async def _copy_tournament(self, row) -> str:
        data = map_tournament(row)
        if data["date"] is None or not data["title"]:
            return "skipped"
        if await self._exists(Tournament, data["id"]):
            return "conflicts"
        if data["created_by"] is not None and not await self._exists(User, data["created_by"]):
            data["created_by"] = None
        self.target.add(Tournament(**data))
        return "copied"

    async def _copy_registration(self, row) -> str:
        data = map_registration(row)
        tournament_id = data["tournament_id"]
        if not (
            await self._exists(Tournament, tournament_id)
            and await self._exists(Team, data["team_id"])
            and await self._exists(User, data["user_id"])
        ):
            return "skipped"
        clash = await self.target.scalar(
            select(Registration.id).where(
                or_(
                    Registration.id == data["id"],
                    (Registration.tournament_id == tournament_id)
                    & (Registration.team_id == data["team_id"]),
                )
            )
        )
        if clash is not None:
            return "conflicts"

        if tournament_id not in self._next_slot:
            self._next_slot[tournament_id] = await self.target.scalar(
                select(func.coalesce(func.max(Registration.slot), 0)).where(
                    Registration.tournament_id == tournament_id
                )
            ) or 0
        slot = data["slot"]
        if slot is not None:
            taken = await self.target.scalar(
                select(Registration.id).where(
                    Registration.tournament_id == tournament_id, Registration.slot == slot
                )
            )
            if taken is not None:
                slot = None
        if slot is None:
            slot = self._next_slot[tournament_id] + 1
        self._next_slot[tournament_id] = max(self._next_slot[tournament_id], slot)
        data["slot"] = slot

        self.target.add(Registration(**data))
        return "copied"

    async def _copy_notification(self, row) -> str:
        data = map_notification(row)
        if await self._exists(Notification, data["id"]):
            return "conflicts"
        if data["user_id"] is not None and not await self._exists(User, data["user_id"]):
            return "skipped"
        self.target.add(Notification(**data))
        # Legacy per-user notifications kept their read flag on the row itself.
        if data["user_id"] is not None and _get(row, "is_read", "isRead", default=False):
            await self.target.flush()
            self.target.add(NotificationRead(user_id=data["user_id"], notification_id=data["id"]))
        return "copied"

    async def _copy_notification_read(self, row) -> str:
        data = map_notification_read(row)
        if not (
            await self._exists(User, data["user_id"])
            and await self._exists(Notification, data["notification_id"])
        ):
            return "skipped"
        clash = await self.target.scalar(
            select(NotificationRead.id).where(
                or_(
                    NotificationRead.id == data["id"],
                    (NotificationRead.user_id == data["user_id"])
                    & (NotificationRead.notification_id == data["notification_id"]),
                )
            )
        )
        if clash is not None:
            return "conflicts"
        self.target.add(NotificationRead(**data))
        return "copied"


async def _reset_sequences(db: AsyncSession) -> None:
    """Move Postgres id sequences past the ids copied explicitly."""

    if db.get_bind().dialect.name != "postgresql":
        return
    for table in TABLE_ORDER:
        await db.execute(
            text(
                f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                f"COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)"
            )
        )

"""Idempotent schema upgrades applied after metadata.create_all()."""
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

_ALREADY_EXISTS = ("duplicate column name", "already exists")


async def _run_ddl(conn: AsyncConnection, statements: list[str]) -> None:
    for ddl in statements:
        try:
            if conn.dialect.name == "sqlite":
                # A failed ALTER inside the surrounding transaction must not poison it.
                async with conn.begin_nested():
                    await conn.execute(text(ddl))
            else:
                await conn.execute(text(ddl))
        except DBAPIError as ddl_error:
            message = str(getattr(ddl_error, "orig", ddl_error)).lower()
            if not any(phrase in message for phrase in _ALREADY_EXISTS):
                raise


async def ensure_tournament_counter_columns(conn: AsyncConnection) -> None:
    """Databases created before slot counters existed get the columns and a backfill."""

    if conn.dialect.name == "sqlite":
        statements = [
            "ALTER TABLE tournaments ADD COLUMN registered_count INTEGER NOT NULL DEFAULT 0",
            "ALTER TABLE tournaments ADD COLUMN next_slot INTEGER NOT NULL DEFAULT 0",
            "ALTER TABLE tournaments ADD COLUMN ends_at DATETIME",
        ]
    else:
        statements = [
            "ALTER TABLE tournaments ADD COLUMN IF NOT EXISTS registered_count "
            "INTEGER NOT NULL DEFAULT 0",
            "ALTER TABLE tournaments ADD COLUMN IF NOT EXISTS next_slot "
            "INTEGER NOT NULL DEFAULT 0",
            "ALTER TABLE tournaments ADD COLUMN IF NOT EXISTS ends_at TIMESTAMP",
        ]
    await _run_ddl(conn, statements)
    await recompute_tournament_counters(conn)


async def ensure_user_moderation_columns(conn: AsyncConnection) -> None:
    if conn.dialect.name == "sqlite":
        statements = ["ALTER TABLE users ADD COLUMN is_banned BOOLEAN NOT NULL DEFAULT 0"]
    else:
        statements = [
            "ALTER TABLE users ADD COLUMN IF NOT EXISTS is_banned BOOLEAN NOT NULL DEFAULT FALSE"
        ]
    await _run_ddl(conn, statements)


async def ensure_notification_audience_column(conn: AsyncConnection) -> None:
    if conn.dialect.name == "sqlite":
        statements = [
            "ALTER TABLE notifications ADD COLUMN audience VARCHAR(16) NOT NULL DEFAULT 'broadcast'"
        ]
    else:
        statements = [
            "ALTER TABLE notifications ADD COLUMN IF NOT EXISTS audience "
            "VARCHAR(16) NOT NULL DEFAULT 'broadcast'"
        ]
    await _run_ddl(conn, statements)
    await conn.execute(
        text(
            "UPDATE notifications SET audience = 'user' "
            "WHERE user_id IS NOT NULL AND audience = 'broadcast'"
        )
    )


async def recompute_tournament_counters(conn: AsyncConnection) -> None:
    """Re-derive registered_count and next_slot from the registrations table.

    next_slot only ever grows, so it is raised to the highest used slot but
    never lowered. total_slots is raised when imported data overfilled a
    tournament.
    """

    await conn.execute(
        text(
            "UPDATE tournaments SET "
            "total_slots = MAX(total_slots, (SELECT COUNT(*) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id)), "
            "registered_count = (SELECT COUNT(*) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id), "
            "next_slot = MAX(next_slot, COALESCE((SELECT MAX(r.slot) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id), 0))"
            if conn.dialect.name == "sqlite"
            else "UPDATE tournaments SET "
            "total_slots = GREATEST(total_slots, (SELECT COUNT(*) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id)), "
            "registered_count = (SELECT COUNT(*) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id), "
            "next_slot = GREATEST(next_slot, COALESCE((SELECT MAX(r.slot) FROM registrations r "
            "WHERE r.tournament_id = tournaments.id), 0))"
        )
    )


async def apply_schema_upgrades(conn: AsyncConnection) -> None:
    await ensure_user_moderation_columns(conn)
    await ensure_tournament_counter_columns(conn)
    await ensure_notification_audience_column(conn)

"""Copy users, teams, tournaments, registrations and notifications from the
legacy database into the configured one.

Usage:
    python scripts/sync_legacy_data.py --source postgresql://... [--dry-run]

``--source`` defaults to LEGACY_DATABASE_URL.
"""

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine

import tourneyhub.database as database
from tourneyhub.legacy_sync import LegacySync


async def main(source_url: str, dry_run: bool) -> None:
    await database.init_models()
    source_engine = create_async_engine(database._normalize_database_url(source_url))
    try:
        async with source_engine.connect() as source, database.async_session() as target:
            report = await LegacySync(source, target, dry_run=dry_run).run()
    finally:
        await source_engine.dispose()
        await database.engine.dispose()
    print(report.summary())


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    parser = argparse.ArgumentParser(description="Sync rows from the legacy datastore")
    parser.add_argument("--source", default=os.getenv("LEGACY_DATABASE_URL"))
    parser.add_argument("--dry-run", action="store_true", help="Roll back instead of committing")
    args = parser.parse_args()
    if not args.source:
        raise SystemExit("Provide --source or set LEGACY_DATABASE_URL")
    asyncio.run(main(args.source, args.dry_run))

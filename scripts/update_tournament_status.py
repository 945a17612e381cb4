"""Run one tournament status pass against the configured database.

Usage:
    python scripts/update_tournament_status.py
"""

import asyncio
import logging

import tourneyhub.database as database
from tourneyhub.services.status_updater import StatusUpdater


async def main() -> None:
    await database.init_models()
    updater = StatusUpdater(database.SessionLocal, interval_seconds=0)
    outcome = await updater.run_once()
    print(f"Checked {outcome.checked} tournaments.")
    for tournament_id, status in sorted(outcome.changed.items()):
        print(f"  tournament {tournament_id} -> {status}")
    if outcome.failed:
        print(f"  failed: {', '.join(str(t) for t in outcome.failed)} (will retry next pass)")
    await database.engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    asyncio.run(main())

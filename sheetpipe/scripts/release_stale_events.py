# sheetpipe/scripts/release_stale_events.py
"""
Operator recovery: events left in `processing` by a crashed run or an
abandoned batch are put back to `pending` so the processor picks them up.
"""
import argparse
import asyncio
import logging
from sheetpipe.core.config import STALE_PROCESSING_SECONDS
from sheetpipe.core.db import init_db, close_db
from sheetpipe.core.logging import setup_logging
from sheetpipe.services.event_queue import release_stale

log = logging.getLogger("sheetpipe.release_stale")


async def main(older_than: int):
    setup_logging()
    await init_db()
    try:
        released = await release_stale(older_than)
        log.info(f"Released {released} events claimed more than {older_than}s ago.")
    finally:
        await close_db()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--older-than", type=int, default=STALE_PROCESSING_SECONDS, help="Seconds since claim")
    args = parser.parse_args()
    asyncio.run(main(args.older_than))

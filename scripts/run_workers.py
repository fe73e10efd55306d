#!/usr/bin/env python3
"""
Run the background workers outside the API process
Usage: python scripts/run_workers.py [reaper|dispatcher|once]

  reaper      expire overdue quotes every REAPER_INTERVAL_SECONDS
  dispatcher  deliver queued documents and notifications
  once        one reaper sweep followed by one dispatch pass
"""

import asyncio
import logging
import signal
import sys

from charter_booking.config import LOG_LEVEL
from charter_booking.database import async_session_factory, close_db, init_db
from charter_booking.services.dispatcher import SideEffectDispatcher
from charter_booking.services.reaper import DeadlineReaper

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MODES = ("reaper", "dispatcher", "once")


async def run_once():
    """Single sweep and dispatch pass, for cron-style scheduling."""
    dispatcher = SideEffectDispatcher(async_session_factory)
    reaper = DeadlineReaper(async_session_factory)

    sweep = await reaper.sweep()
    logger.info(
        f"🧹 Sweep: {sweep.expired} expired, {sweep.skipped} skipped, "
        f"{sweep.closed_flights} flight(s) closed, {sweep.errors} errors"
    )

    report = await dispatcher.run_once()
    logger.info(
        f"🏁 Dispatch: {report.succeeded} sent, {report.retried} retrying, "
        f"{report.failed} failed, {report.errors} errors"
    )


async def run_forever(mode: str):
    if mode == "reaper":
        worker = DeadlineReaper(async_session_factory)
    else:
        worker = SideEffectDispatcher(async_session_factory)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    await worker.run_forever()


async def main(mode: str):
    await init_db()
    try:
        if mode == "once":
            await run_once()
        else:
            await run_forever(mode)
    finally:
        await close_db()


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "once"
    if mode not in MODES:
        print(f"Usage: python scripts/run_workers.py [{'|'.join(MODES)}]")
        sys.exit(1)
    asyncio.run(main(mode))

# scripts/sync_daemon.py
from __future__ import annotations

import argparse
import logging
import os
import sys
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.payments.repository import StoreError  # noqa: E402
from app.rail.base import RailError  # noqa: E402
from deps.sync import get_sync_engine  # noqa: E402
from services.observability import configure_logging  # noqa: E402
from settings import settings  # noqa: E402


logger = logging.getLogger("billpay.sync_daemon")


def run_once(engine) -> bool:
    try:
        result = engine.sync_payment_data()
    except (RailError, StoreError):
        # Already logged by the engine; cursor stays where it was
        return False

    if result.busy:
        logger.info("Sync pass skipped; another process is syncing at cursor %s", result.start_cursor)
        return True

    logger.info(
        "Sync pass done | cursor %s -> %s applied=%s skipped=%s rejected=%s truncated=%s",
        result.start_cursor,
        result.end_cursor,
        result.applied,
        result.skipped,
        result.rejected,
        result.truncated,
    )
    return True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Poll the transfer rail for payment events.")
    parser.add_argument("--once", action="store_true", help="run a single sync pass and exit")
    parser.add_argument("--interval", type=int, default=settings.SYNC_INTERVAL_SECONDS)
    args = parser.parse_args(argv)

    configure_logging()
    engine = get_sync_engine()

    if args.once:
        return 0 if run_once(engine) else 1

    interval = max(1, args.interval)
    logger.info("Sync daemon starting; interval=%ss", interval)
    try:
        while True:
            run_once(engine)
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("Sync daemon exiting")
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""Watch the jobs table and restart dead or transiently failed job workers.

Usage:
    uv run python scripts/run_watchdog.py [--once]

Runs until interrupted, polling every WATCHDOG_CHECK_INTERVAL_SECONDS.
``--once`` runs a single check (for cron-style scheduling); note that restart
attempt counts are only remembered within one watchdog process.

Requires DATABASE_URL to be configured.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running from backend/ directory without installing the package.
_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

# Load .env from project root (parent of backend/).
load_dotenv(_BACKEND_DIR.parent / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

from src.db import create_tables, get_session_factory  # noqa: E402
from src.services.job_store import JobStore  # noqa: E402
from src.services.watchdog import Watchdog, WorkerSpawner  # noqa: E402
from src.settings import WatchdogSettings  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Restart crashed tech pack extraction jobs.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check and exit instead of polling forever.",
    )
    args = parser.parse_args()

    create_tables()
    watchdog = Watchdog(
        JobStore(get_session_factory()),
        WorkerSpawner(),
        WatchdogSettings.from_env(),
    )
    if args.once:
        watchdog.poll_once()
        return
    try:
        watchdog.run_forever()
    except KeyboardInterrupt:
        logging.getLogger("run_watchdog").info("interrupted, exiting")


if __name__ == "__main__":
    main()

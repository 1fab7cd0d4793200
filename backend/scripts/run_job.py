"""Run one tech pack extraction job in this process.

Usage:
    uv run python scripts/run_job.py <job_id>

Loads the job record, resumes from whatever a previous run saved, downloads the
missing tech packs, extracts their attributes and writes the export payload
back to the job. A heartbeat keeps ``updated_at`` fresh for the watchdog; any
unrecoverable fault marks the job failed and exits with status 1.

Requires DATABASE_URL, GEMINI_API_KEY, GEMINI_PDF_MODEL and
TECH_PACK_URL_TEMPLATE to be configured.
"""

import argparse
import logging
import os
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

from src.db import get_session_factory  # noqa: E402
from src.services.acquisition import HttpAcquisitionEngine  # noqa: E402
from src.services.extraction import GeminiExtractionClient  # noqa: E402
from src.services.heartbeat import CrashGuard, Heartbeat  # noqa: E402
from src.services.job_store import JobStore  # noqa: E402
from src.services.pipeline import JobProcessor  # noqa: E402
from src.settings import PipelineSettings  # noqa: E402

logger = logging.getLogger("run_job")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Process one tech pack extraction job.")
    parser.add_argument("job_id", help="Id of the job record to process")
    args = parser.parse_args(argv)
    job_id: str = args.job_id

    try:
        store = JobStore(get_session_factory())
        store.get(job_id)
    except Exception as exc:
        logger.error("cannot start job %s: %s", job_id, exc)
        return 1

    # Startup faults from here on are recorded on the job.
    try:
        settings = PipelineSettings.from_env()
    except Exception as exc:
        message = f"Invalid configuration: {type(exc).__name__}: {exc}"
        logger.error("cannot start job %s: %s", job_id, message)
        try:
            store.mark_failed(job_id, message)
        except Exception as store_exc:
            logger.error("could not mark job %s failed: %s", job_id, store_exc)
        return 1

    heartbeat = Heartbeat(store, job_id, settings.heartbeat_interval_seconds)
    guard = CrashGuard(store, job_id, heartbeat, exit_fn=os._exit)
    guard.install()
    heartbeat.start()

    try:
        engine = HttpAcquisitionEngine(
            settings.tech_pack_url_template,
            auth_token=settings.tech_pack_auth_token,
        )
        processor = JobProcessor(store, settings, engine, GeminiExtractionClient())
        processor.run(job_id)
    except Exception as exc:
        message = f"{type(exc).__name__}: {exc}"
        logger.exception("job %s failed: %s", job_id, message)
        try:
            store.mark_failed(job_id, message)
        except Exception as store_exc:
            logger.error("could not mark job %s failed: %s", job_id, store_exc)
        return 1
    finally:
        heartbeat.stop()
        guard.uninstall()

    logger.info("job %s finished, data ready for export", job_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())

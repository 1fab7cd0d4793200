"""Job watchdog: restarts workers for dead or transiently failed jobs.

Checks for:
1. Dead jobs: status "processing" but no heartbeat within the stale threshold.
2. Failed jobs: status "failed" recently, with an error matching a known
   transient fault (browser/page closed, timeouts, connection resets).

For either, a fresh worker process is spawned; it resumes from the progress
saved on the job record. Restart attempts per job are capped.
"""

import logging
import os
import subprocess
import sys
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from src.models.job import Job, utcnow
from src.services.job_store import JobStore
from src.settings import WatchdogSettings

logger = logging.getLogger(__name__)

RUN_JOB_SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "run_job.py"

# Substrings of error messages for faults worth an automatic restart.
RETRYABLE_ERRORS = [
    "Target page, context or browser has been closed",
    "browser has been closed",
    "context has been closed",
    "page has been closed",
    "Popup never opened",
    "Navigation timeout",
    "Timeout exceeded",
    "net::ERR_",
    "ECONNRESET",
    "ETIMEDOUT",
    "socket hang up",
    "Connection reset",
    "ConnectionResetError",
    "timed out",
    "ReadTimeout",
    "ConnectTimeout",
    "RemoteProtocolError",
    "Server disconnected",
    "Unhandled thread exception",
]


def is_retryable_error(error_message: str | None) -> bool:
    if not error_message:
        return False
    return any(pattern in error_message for pattern in RETRYABLE_ERRORS)


class WorkerSpawner:
    """Starts ``run_job.py <job_id>`` as a detached process and does not wait for it."""

    def __init__(self, command: list[str] | None = None) -> None:
        self._command = command or [sys.executable, str(RUN_JOB_SCRIPT)]

    def start(self, job_id: str) -> subprocess.Popen[bytes]:
        return subprocess.Popen(
            [*self._command, job_id],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            env=os.environ.copy(),
        )


class Watchdog:
    """Polls the job store and restarts dead or retryable-failed jobs.

    Restart attempts are tracked in memory only, per watchdog process.
    """

    def __init__(
        self,
        store: JobStore,
        spawner: WorkerSpawner,
        settings: WatchdogSettings,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._spawner = spawner
        self._settings = settings
        self._now = now
        self._attempts: dict[str, int] = {}

    def attempts(self, job_id: str) -> int:
        return self._attempts.get(job_id, 0)

    def poll_once(self) -> None:
        self.check_dead_jobs()
        self.check_failed_jobs()
        self.cleanup_restart_attempts()

    def run_forever(self, stop: threading.Event | None = None) -> None:
        stop = stop or threading.Event()
        s = self._settings
        logger.info("starting job watchdog")
        logger.info("check interval: %.0fs", s.check_interval_seconds)
        logger.info("stale threshold: %.0fs", s.stale_threshold_seconds)
        logger.info("failed retry window: %.0fs", s.failed_retry_window_seconds)
        logger.info("max restart attempts: %d", s.max_restart_attempts)
        logger.info("retryable errors: %d patterns", len(RETRYABLE_ERRORS))
        self.poll_once()
        while not stop.wait(s.check_interval_seconds):
            self.poll_once()
        logger.info("job watchdog stopped")

    def check_dead_jobs(self) -> None:
        stale_before = self._now() - timedelta(seconds=self._settings.stale_threshold_seconds)
        try:
            dead_jobs = self._store.find_stalled(stale_before)
        except Exception as exc:
            logger.error("error checking for dead jobs: %s", exc)
            return
        if not dead_jobs:
            return
        logger.info("found %d dead job(s)", len(dead_jobs))
        for job in dead_jobs:
            self._restart_job(job, "dead")

    def check_failed_jobs(self) -> None:
        try:
            failed_jobs = self._store.find_recently_failed(self._recent_cutoff())
        except Exception as exc:
            logger.error("error checking for failed jobs: %s", exc)
            return
        retryable = [job for job in failed_jobs if is_retryable_error(job.error_message)]
        if not retryable:
            return
        logger.info("found %d failed job(s) with retryable errors", len(retryable))
        for job in retryable:
            self._restart_job(job, "failed-retry")

    def cleanup_restart_attempts(self) -> None:
        """Forget jobs that left processing for a reason this watchdog will not retry."""
        if not self._attempts:
            return
        try:
            jobs = self._store.find_by_ids(list(self._attempts))
        except Exception as exc:
            logger.error("error cleaning up restart tracking: %s", exc)
            return
        cutoff = self._recent_cutoff()
        for job in jobs:
            if job.status == "processing":
                continue
            if (
                job.status == "failed"
                and is_retryable_error(job.error_message)
                and job.updated_at > cutoff
            ):
                continue
            self._attempts.pop(job.id, None)
            logger.info("cleared restart tracking for %s (status: %s)", job.id, job.status)

    def _recent_cutoff(self) -> datetime:
        return self._now() - timedelta(seconds=self._settings.failed_retry_window_seconds)

    def _restart_job(self, job: Job, reason: str) -> None:
        attempts = self._attempts.get(job.id, 0)
        max_attempts = self._settings.max_restart_attempts

        if attempts >= max_attempts:
            logger.warning("job %s has failed %d times, not restarting", job.id, attempts)
            try:
                self._store.update(
                    job.id,
                    status="failed",
                    error_message=(
                        f"Job crashed {attempts} times and was not restarted. "
                        f"Last progress: {job.progress_percent}% at {job.current_style}"
                    ),
                )
            except Exception as exc:
                logger.error("could not mark job %s permanently failed: %s", job.id, exc)
            self._attempts.pop(job.id, None)
            return

        logger.info(
            "restarting job %s [%s] (attempt %d/%d)", job.id, reason, attempts + 1, max_attempts
        )
        logger.info("  - progress: %s%%", job.progress_percent)
        logger.info("  - last style: %s", job.current_style)
        logger.info("  - downloads done: %d", len(job.completed_downloads or []))
        logger.info("  - extractions done: %d", len(job.completed_extractions or []))
        if job.error_message:
            logger.info("  - error: %.100s", job.error_message)

        try:
            self._store.update(job.id, status="processing", error_message=None)
            process = self._spawner.start(job.id)
        except Exception as exc:
            # Still counts toward the cap.
            logger.error("failed to restart job %s: %s", job.id, exc)
            self._attempts[job.id] = attempts + 1
            return

        self._attempts[job.id] = attempts + 1
        logger.info("spawned processor for job %s (pid: %s)", job.id, process.pid)

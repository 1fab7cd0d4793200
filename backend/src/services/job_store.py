"""Typed read/update operations against persisted job records."""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from src.models.job import Job, utcnow

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Raised when no job record exists for the requested id."""


class JobStore:
    """Partial-field upserts on the ``jobs`` table.

    Every write refreshes ``updated_at``, which doubles as the heartbeat the
    watchdog watches. Each call opens its own short-lived session; writes from
    threads within one process are serialized by a lock so read-modify-write
    updates of the JSON tracking columns cannot lose entries.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._lock = threading.RLock()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, job_id: str) -> Job:
        db = self._session_factory()
        try:
            job = db.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return job
        finally:
            db.close()

    def find_stalled(self, older_than: datetime) -> list[Job]:
        """Jobs still marked processing whose heartbeat is older than *older_than*."""
        db = self._session_factory()
        try:
            return (
                db.query(Job)
                .filter(Job.status == "processing", Job.updated_at < older_than)
                .all()
            )
        finally:
            db.close()

    def find_recently_failed(self, since: datetime) -> list[Job]:
        db = self._session_factory()
        try:
            return db.query(Job).filter(Job.status == "failed", Job.updated_at > since).all()
        finally:
            db.close()

    def find_by_ids(self, job_ids: Iterable[str]) -> list[Job]:
        ids = list(job_ids)
        if not ids:
            return []
        db = self._session_factory()
        try:
            return db.query(Job).filter(Job.id.in_(ids)).all()
        finally:
            db.close()

    # ── Writes ────────────────────────────────────────────────────────────────

    def create(self, job_id: str, input_file_name: str | None = None) -> Job:
        """Insert a queued job record. Submission normally happens outside this service."""
        with self._lock:
            db = self._session_factory()
            try:
                job = Job(
                    id=job_id,
                    status="queued",
                    input_file_name=input_file_name,
                    progress_percent=0,
                    completed_downloads=[],
                    completed_extractions=[],
                    partial_extractions={},
                )
                db.add(job)
                db.commit()
                db.refresh(job)
                return job
            finally:
                db.close()

    def update(self, job_id: str, **fields: Any) -> None:
        """Write only *fields* on the job; other columns keep whatever they hold."""
        with self._lock:
            db = self._session_factory()
            try:
                job = db.get(Job, job_id)
                if job is None:
                    raise JobNotFoundError(f"Job not found: {job_id}")
                for name, value in fields.items():
                    setattr(job, name, value)
                job.updated_at = utcnow()
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def touch(self, job_id: str) -> None:
        """Refresh the heartbeat without changing anything else."""
        self.update(job_id)

    def mark_failed(self, job_id: str, message: str) -> None:
        self.update(job_id, status="failed", error_message=message)

    def add_completed_download(self, job_id: str, style_no: str) -> None:
        with self._lock:
            job = self.get(job_id)
            done = list(job.completed_downloads or [])
            if style_no in done:
                return
            done.append(style_no)
            self.update(job_id, completed_downloads=done)

    def record_extraction(self, job_id: str, style_no: str, data: dict[str, Any]) -> None:
        """Store an extraction result and mark it complete in one commit."""
        with self._lock:
            job = self.get(job_id)
            partial = dict(job.partial_extractions or {})
            partial[style_no] = data
            done = list(job.completed_extractions or [])
            if style_no not in done:
                done.append(style_no)
            self.update(job_id, partial_extractions=partial, completed_extractions=done)

    def set_resume_state(
        self,
        job_id: str,
        completed_downloads: list[str],
        completed_extractions: list[str],
        partial_extractions: dict[str, Any],
    ) -> None:
        self.update(
            job_id,
            completed_downloads=completed_downloads,
            completed_extractions=completed_extractions,
            partial_extractions=partial_extractions,
        )

    def complete(
        self,
        job_id: str,
        successful_count: int,
        failed_count: int,
        extracted_data: dict[str, Any],
    ) -> None:
        self.update(
            job_id,
            status="ready_for_export",
            progress_percent=100,
            successful_count=successful_count,
            failed_count=failed_count,
            extracted_data=extracted_data,
            error_message=None,
        )
        logger.info(
            "job %s ready for export: %d succeeded, %d failed",
            job_id,
            successful_count,
            failed_count,
        )

"""Runs one tech pack job from resume through export."""

import logging
import math
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from src.schemas.job import ExportTable
from src.services.acquisition import AcquisitionEngine, AcquisitionPool
from src.services.artifacts import ArtifactCache
from src.services.extraction import ExtractionClient, ExtractionStage
from src.services.job_store import JobStore
from src.services.output import assemble_output
from src.services.resume import ResumeController, remaining_extractions
from src.services.types import DownloadResult, ExtractionResult
from src.services.work_items import InputReadError, read_work_items
from src.settings import PipelineSettings

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Shared progress counter for both phases.

    Downloads and extractions share one scale of ``total_styles * 2`` steps,
    capped at 99 until the job completes. The reported percentage never goes
    down within one process.
    """

    def __init__(self, store: JobStore, job_id: str, total_styles: int, processed: int = 0) -> None:
        self._store = store
        self._job_id = job_id
        self._total_steps = total_styles * 2
        self._processed = processed
        self._percent = 0
        self._lock = threading.Lock()

    @property
    def percent(self) -> int:
        return self._percent

    def advance(self, phase: str, style_no: str) -> int:
        with self._lock:
            self._processed += 1
            if self._total_steps:
                computed = math.floor(self._processed / self._total_steps * 100 + 0.5)
                self._percent = max(self._percent, min(99, computed))
            percent = self._percent
            self._store.update(
                self._job_id,
                current_style=f"{phase}: {style_no}",
                progress_percent=percent,
            )
        return percent


class JobProcessor:
    """Runs one job end to end, picking up from whatever a previous run recorded."""

    def __init__(
        self,
        store: JobStore,
        settings: PipelineSettings,
        engine: AcquisitionEngine,
        extraction_client: ExtractionClient,
        cache: ArtifactCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self._engine = engine
        self._extraction_client = extraction_client
        self._cache = cache or ArtifactCache(
            settings.tech_pack_dir,
            settings.max_age_days,
            settings.artifact_public_base_url,
        )
        self._sleep = sleep

    def _input_path(self, input_file_name: str | None) -> Path:
        if not input_file_name:
            raise InputReadError("Job has no input file")
        # Only the base name is honoured; inputs always live under input_dir.
        return self._settings.input_dir / Path(input_file_name).name

    def run(self, job_id: str) -> ExportTable:
        logger.info("processing job: %s", job_id)
        job = self._store.get(job_id)

        items = read_work_items(self._input_path(job.input_file_name))
        styles = items["unique_styles"]
        total = len(styles)
        self._store.update(job_id, style_count=total, status="processing", error_message=None)
        logger.info("found %d styles", total)

        plan = ResumeController(self._store, self._cache).plan(job_id, styles)
        progress = ProgressTracker(
            self._store,
            job_id,
            total,
            processed=len(plan.completed_downloads) + len(plan.completed_extractions),
        )

        # ── Phase 1: download tech packs ──────────────────────────────────────
        def on_download(result: DownloadResult) -> None:
            if result["success"]:
                self._store.add_completed_download(job_id, result["style_no"])
            progress.advance("download", result["style_no"])

        logger.info("starting tech pack downloads (%d remaining)", len(plan.remaining_downloads))
        pool = AcquisitionPool(self._engine, self._cache, self._settings.parallel_workers)
        download_results = pool.run(plan.remaining_downloads, on_download)

        successful_downloads: list[DownloadResult] = [
            DownloadResult(
                style_no=s, success=True, skipped=True, file_path=str(self._cache.path_for(s))
            )
            for s in plan.verified_downloads
        ]
        successful_downloads += [r for r in download_results if r["success"]]
        logger.info(
            "downloads complete: %d/%d",
            len(successful_downloads) + len(plan.completed_extractions),
            total,
        )

        # ── Phase 2: extract attributes ───────────────────────────────────────
        extractions: dict[str, dict[str, Any]] = dict(plan.partial_extractions)

        def on_extract(result: ExtractionResult) -> None:
            if result["success"]:
                data = result.get("data", {})
                self._store.record_extraction(job_id, result["style_no"], data)
                extractions[result["style_no"]] = data
            progress.advance("extract", result["style_no"])

        to_extract = remaining_extractions(successful_downloads, plan.completed_extractions)
        logger.info("starting attribute extraction (%d remaining)", len(to_extract))
        stage = ExtractionStage(
            self._extraction_client,
            self._cache.read,
            delay_seconds=self._settings.extraction_delay_seconds,
            max_retries=self._settings.extraction_max_retries,
            sleep=self._sleep,
        )
        stage.run(to_extract, on_extract)

        successful_count = sum(1 for s in styles if s in extractions)
        logger.info("extractions complete: %d/%d", successful_count, total)

        # ── Phase 3: assemble output ──────────────────────────────────────────
        table = assemble_output(
            extractions,
            styles,
            items["style_to_rows"],
            items["header"],
            self._cache.public_url,
        )
        self._store.complete(
            job_id,
            successful_count=successful_count,
            failed_count=total - successful_count,
            extracted_data=table.model_dump(),
        )
        return table

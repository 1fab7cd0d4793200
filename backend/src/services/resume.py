"""Reconcile a job's persisted progress against the work it still has to do."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.services.artifacts import ArtifactCache
from src.services.job_store import JobStore
from src.services.types import DownloadResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResumePlan:
    # Styles that still need a tech pack, in input order.
    remaining_downloads: list[str]
    # Previously downloaded, still fresh, not yet extracted.
    verified_downloads: list[str]
    # Corrected tracking state to persist.
    completed_downloads: list[str]
    completed_extractions: list[str]
    partial_extractions: dict[str, Any] = field(default_factory=dict)
    # Recorded as downloaded but the artifact was missing or stale.
    requeued: list[str] = field(default_factory=list)


def reconcile(
    all_styles: list[str],
    completed_downloads: list[str],
    completed_extractions: list[str],
    partial_extractions: dict[str, Any],
    is_fresh: Callable[[str], bool],
) -> ResumePlan:
    """Compute remaining work from persisted progress. Pure; running it twice is a no-op.

    A stored partial extraction is what makes a style done: it is folded into
    the result without touching its artifact again. A completed-extraction
    entry with no stored data is dropped so the style is extracted again. Every
    other style recorded as downloaded must still have a fresh artifact, or it
    goes back on the download queue.
    """
    wanted = set(all_styles)
    partial = {k: v for k, v in partial_extractions.items() if k in wanted}
    previously_downloaded = set(completed_downloads)

    dropped = [s for s in completed_extractions if s in wanted and s not in partial]
    if dropped:
        logger.warning("resume: %d extraction(s) recorded without data, redoing: %s", len(dropped), dropped)

    verified: list[str] = []
    requeued: list[str] = []
    for style_no in all_styles:
        if style_no in partial or style_no not in previously_downloaded:
            continue
        if is_fresh(style_no):
            verified.append(style_no)
        else:
            requeued.append(style_no)

    verified_set = set(verified)
    return ResumePlan(
        remaining_downloads=[s for s in all_styles if s not in partial and s not in verified_set],
        verified_downloads=verified,
        completed_downloads=[s for s in all_styles if s in partial or s in verified_set],
        completed_extractions=[s for s in all_styles if s in partial],
        partial_extractions=partial,
        requeued=requeued,
    )


def remaining_extractions(
    successful_downloads: list[DownloadResult],
    completed_extractions: list[str],
) -> list[DownloadResult]:
    done = set(completed_extractions)
    return [d for d in successful_downloads if d["style_no"] not in done]


class ResumeController:
    def __init__(self, store: JobStore, cache: ArtifactCache) -> None:
        self._store = store
        self._cache = cache

    def plan(self, job_id: str, all_styles: list[str]) -> ResumePlan:
        """Load the job, reconcile it, and persist any corrections."""
        job = self._store.get(job_id)
        stored_downloads = list(job.completed_downloads or [])
        stored_extractions = list(job.completed_extractions or [])
        stored_partial = dict(job.partial_extractions or {})

        plan = reconcile(
            all_styles,
            stored_downloads,
            stored_extractions,
            stored_partial,
            self._cache.is_fresh,
        )

        if plan.requeued:
            logger.warning(
                "resume: %d tech pack(s) missing or stale, re-downloading: %s",
                len(plan.requeued),
                plan.requeued,
            )
        changed = (
            set(plan.completed_downloads) != set(stored_downloads)
            or set(plan.completed_extractions) != set(stored_extractions)
            or set(plan.partial_extractions) != set(stored_partial)
        )
        if changed:
            self._store.set_resume_state(
                job_id,
                completed_downloads=plan.completed_downloads,
                completed_extractions=plan.completed_extractions,
                partial_extractions=plan.partial_extractions,
            )

        logger.info(
            "resume: %d/%d downloads done, %d extractions done, %d download(s) remaining",
            len(plan.completed_downloads),
            len(all_styles),
            len(plan.completed_extractions),
            len(plan.remaining_downloads),
        )
        return plan

"""On-disk cache of downloaded tech pack PDFs, one file per style."""

import logging
import re
import time
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9._-]")
_SECONDS_PER_DAY = 86400


def safe_name(style_no: str) -> str:
    return _UNSAFE_RE.sub("_", style_no)


def artifact_name(style_no: str) -> str:
    return f"Tech_Pack_{safe_name(style_no)}.pdf"


class ArtifactCache:
    """Stores artifacts as ``Tech_Pack_<style>.pdf`` and judges their freshness.

    An artifact is fresh while its modification time is within *max_age_days*
    of now; stale or missing artifacts must be downloaded again.
    """

    def __init__(
        self,
        base_dir: Path,
        max_age_days: int,
        public_base_url: str | None = None,
    ) -> None:
        self._base_dir = base_dir
        self._max_age_seconds = max_age_days * _SECONDS_PER_DAY
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, style_no: str) -> Path:
        return self._base_dir / artifact_name(style_no)

    def is_fresh(self, style_no: str, now: float | None = None) -> bool:
        path = self.path_for(style_no)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return False
        age = (now if now is not None else time.time()) - mtime
        return age <= self._max_age_seconds

    def fresh_path(self, style_no: str) -> Path | None:
        """Return the cached artifact path if it is present and fresh, else None."""
        if self.is_fresh(style_no):
            return self.path_for(style_no)
        return None

    def save(self, style_no: str, pdf_bytes: bytes) -> Path:
        path = self.path_for(style_no)
        tmp = path.with_suffix(".part")
        tmp.write_bytes(pdf_bytes)
        tmp.replace(path)
        logger.info("saved tech pack for %s (%d bytes)", style_no, len(pdf_bytes))
        return path

    def read(self, style_no: str) -> bytes:
        return self.path_for(style_no).read_bytes()

    def public_url(self, style_no: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{artifact_name(style_no)}"
        return self.path_for(style_no).resolve().as_uri()

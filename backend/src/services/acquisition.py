"""Tech pack acquisition: engine adapter plus the concurrent download worker pool."""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from types import TracebackType
from urllib.parse import quote

import httpx

from src.services.artifacts import ArtifactCache
from src.services.types import DownloadResult

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF"


class AcquisitionError(Exception):
    """Raised when a tech pack cannot be obtained for a style."""


# ── Engine interface ──────────────────────────────────────────────────────────


class AcquisitionSession(ABC):
    """One worker's isolated connection to the acquisition engine."""

    @abstractmethod
    def fetch(self, style_no: str) -> bytes:
        """Return the tech pack PDF bytes for *style_no* or raise."""
        ...

    def recover(self) -> None:
        """Return the session to a usable state after a failed fetch."""

    def close(self) -> None:
        """Release the session's resources."""

    def __enter__(self) -> "AcquisitionSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AcquisitionEngine(ABC):
    @abstractmethod
    def open_session(self, worker_id: int) -> AcquisitionSession:
        """Open a session owned by a single worker."""
        ...


class HttpAcquisitionSession(AcquisitionSession):
    def __init__(self, url_template: str, headers: dict[str, str], timeout: float) -> None:
        self._url_template = url_template
        self._headers = headers
        self._timeout = timeout
        self._client = self._build_client()

    def _build_client(self) -> httpx.Client:
        return httpx.Client(headers=self._headers, follow_redirects=True, timeout=self._timeout)

    def fetch(self, style_no: str) -> bytes:
        url = self._url_template.format(key=quote(style_no, safe=""))
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AcquisitionError(f"{style_no}: {exc}") from exc

        content_type = response.headers.get("content-type", "")
        if "pdf" not in content_type and not response.content.startswith(_PDF_MAGIC):
            raise AcquisitionError(f"{style_no}: response is not a PDF (content-type: {content_type!r})")
        return response.content

    def recover(self) -> None:
        self._client.close()
        self._client = self._build_client()

    def close(self) -> None:
        self._client.close()


class HttpAcquisitionEngine(AcquisitionEngine):
    """Downloads tech packs from an HTTP endpoint, e.g. ``https://plm/techpacks/{key}.pdf``."""

    def __init__(self, url_template: str, auth_token: str | None = None, timeout: float = 120) -> None:
        if not url_template:
            raise ValueError("TECH_PACK_URL_TEMPLATE environment variable is not set")
        if "{key}" not in url_template:
            raise ValueError("TECH_PACK_URL_TEMPLATE must contain a {key} placeholder")
        self._url_template = url_template
        self._headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
        self._timeout = timeout

    def open_session(self, worker_id: int) -> AcquisitionSession:
        return HttpAcquisitionSession(self._url_template, dict(self._headers), self._timeout)


# ── Worker pool ───────────────────────────────────────────────────────────────


class WorkQueue:
    """Shared queue of style keys; each key is handed to exactly one claimant."""

    def __init__(self, items: Iterable[str]) -> None:
        self._items = deque(items)
        self._lock = threading.Lock()

    def claim(self) -> str | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class AcquisitionPool:
    """Runs up to *parallelism* download workers over one shared queue.

    Each worker owns its own engine session and processes styles one at a
    time. A failed style is recorded and the worker moves on; nothing a single
    style does can stop the pool.
    """

    def __init__(self, engine: AcquisitionEngine, cache: ArtifactCache, parallelism: int) -> None:
        self._engine = engine
        self._cache = cache
        self._parallelism = max(1, parallelism)

    def run(
        self,
        styles: list[str],
        on_item_done: Callable[[DownloadResult], None],
    ) -> list[DownloadResult]:
        if not styles:
            return []
        queue = WorkQueue(styles)
        results: list[DownloadResult] = []
        results_lock = threading.Lock()

        def record(result: DownloadResult) -> None:
            with results_lock:
                results.append(result)
            on_item_done(result)

        worker_count = min(self._parallelism, len(styles))
        logger.info("starting %d download worker(s) for %d style(s)", worker_count, len(styles))
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="download") as pool:
            futures = {
                pool.submit(self._run_worker, worker_id, queue, record): worker_id
                for worker_id in range(1, worker_count + 1)
            }
            for fut in as_completed(futures):
                fut.result()

        # Styles left behind when every worker failed to open a session.
        while (style_no := queue.claim()) is not None:
            record(DownloadResult(style_no=style_no, success=False, error="No download worker available"))

        return results

    def _run_worker(
        self,
        worker_id: int,
        queue: WorkQueue,
        record: Callable[[DownloadResult], None],
    ) -> None:
        try:
            session = self._engine.open_session(worker_id)
        except Exception as exc:
            logger.error("[W%d] could not open acquisition session: %s", worker_id, exc)
            return

        with session:
            logger.info("[W%d] ready", worker_id)
            while (style_no := queue.claim()) is not None:
                cached = self._cache.fresh_path(style_no)
                if cached is not None:
                    logger.info("[W%d] already downloaded: %s", worker_id, style_no)
                    record(
                        DownloadResult(
                            style_no=style_no, success=True, skipped=True, file_path=str(cached)
                        )
                    )
                    continue
                record(self._acquire(session, style_no, worker_id))
        logger.info("[W%d] download worker finished", worker_id)

    def _acquire(self, session: AcquisitionSession, style_no: str, worker_id: int) -> DownloadResult:
        logger.info("[W%d] downloading: %s", worker_id, style_no)
        try:
            pdf_bytes = session.fetch(style_no)
            path = self._cache.save(style_no, pdf_bytes)
        except Exception as exc:
            logger.error("[W%d] failed %s: %s", worker_id, style_no, exc)
            try:
                session.recover()
            except Exception as recover_exc:
                logger.warning("[W%d] session recovery failed: %s", worker_id, recover_exc)
            return DownloadResult(style_no=style_no, success=False, error=str(exc))
        return DownloadResult(style_no=style_no, success=True, file_path=str(path))

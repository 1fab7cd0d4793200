"""Unit tests for the download worker pool and the HTTP acquisition engine."""

import threading
import time
from collections import Counter
from unittest.mock import MagicMock, patch

import httpx
import pytest

from src.services.acquisition import (
    AcquisitionEngine,
    AcquisitionError,
    AcquisitionPool,
    AcquisitionSession,
    HttpAcquisitionEngine,
    WorkQueue,
)
from src.services.artifacts import ArtifactCache
from src.services.types import DownloadResult


class _FakeSession(AcquisitionSession):
    def __init__(self, engine: "_FakeEngine", worker_id: int) -> None:
        self._engine = engine
        self.worker_id = worker_id
        self.recovered = 0
        self.closed = False

    def fetch(self, style_no: str) -> bytes:
        with self._engine.lock:
            self._engine.fetched.append(style_no)
        time.sleep(0.001)
        if style_no in self._engine.failing:
            raise AcquisitionError("Popup never opened")
        return b"%PDF-1.4 " + style_no.encode()

    def recover(self) -> None:
        self.recovered += 1

    def close(self) -> None:
        self.closed = True


class _FakeEngine(AcquisitionEngine):
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.fetched: list[str] = []
        self.sessions: list[_FakeSession] = []
        self.lock = threading.Lock()

    def open_session(self, worker_id: int) -> AcquisitionSession:
        session = _FakeSession(self, worker_id)
        with self.lock:
            self.sessions.append(session)
        return session


class TestWorkQueue:
    def test_claims_in_order_then_returns_none(self) -> None:
        queue = WorkQueue(["A", "B"])

        assert queue.claim() == "A"
        assert queue.claim() == "B"
        assert queue.claim() is None

    def test_each_item_claimed_exactly_once_across_threads(self) -> None:
        items = [f"S{i}" for i in range(500)]
        queue = WorkQueue(items)
        claimed: list[str] = []
        lock = threading.Lock()

        def drain() -> None:
            while (item := queue.claim()) is not None:
                with lock:
                    claimed.append(item)

        threads = [threading.Thread(target=drain) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert Counter(claimed) == Counter(items)


class TestAcquisitionPool:
    def test_downloads_every_style_once_with_many_workers(self, cache: ArtifactCache) -> None:
        styles = [f"S{i}" for i in range(30)]
        engine = _FakeEngine()
        done: list[DownloadResult] = []

        results = AcquisitionPool(engine, cache, parallelism=4).run(styles, done.append)

        assert Counter(engine.fetched) == Counter(styles)
        assert len(results) == len(styles) == len(done)
        assert all(r["success"] for r in results)
        assert all(cache.is_fresh(s) for s in styles)

    def test_worker_count_is_bounded_by_item_count(self, cache: ArtifactCache) -> None:
        engine = _FakeEngine()

        AcquisitionPool(engine, cache, parallelism=8).run(["A", "B"], lambda r: None)

        assert len(engine.sessions) == 2
        assert all(s.closed for s in engine.sessions)

    def test_failure_is_recorded_and_worker_continues(self, cache: ArtifactCache) -> None:
        engine = _FakeEngine(failing={"B"})

        results = AcquisitionPool(engine, cache, parallelism=1).run(["A", "B", "C"], lambda r: None)

        by_style = {r["style_no"]: r for r in results}
        assert by_style["A"]["success"] is True
        assert by_style["C"]["success"] is True
        assert by_style["B"]["success"] is False
        assert "Popup never opened" in by_style["B"]["error"]
        assert engine.sessions[0].recovered == 1

    def test_fresh_cached_artifact_is_skipped(self, cache: ArtifactCache) -> None:
        cache.save("A", b"%PDF-1.4 cached")
        engine = _FakeEngine()

        results = AcquisitionPool(engine, cache, parallelism=1).run(["A", "B"], lambda r: None)

        assert engine.fetched == ["B"]
        skipped = next(r for r in results if r["style_no"] == "A")
        assert skipped["success"] is True
        assert skipped["skipped"] is True

    def test_styles_are_failed_when_no_session_can_open(self, cache: ArtifactCache) -> None:
        engine = MagicMock(spec=AcquisitionEngine)
        engine.open_session.side_effect = RuntimeError("login failed")
        done: list[DownloadResult] = []

        results = AcquisitionPool(engine, cache, parallelism=2).run(["A", "B"], done.append)

        assert [r["success"] for r in results] == [False, False]
        assert len(done) == 2

    def test_empty_style_list_starts_no_workers(self, cache: ArtifactCache) -> None:
        engine = _FakeEngine()

        assert AcquisitionPool(engine, cache, parallelism=3).run([], lambda r: None) == []
        assert engine.sessions == []


class TestHttpAcquisitionEngine:
    def test_requires_key_placeholder(self) -> None:
        with pytest.raises(ValueError, match="placeholder"):
            HttpAcquisitionEngine("https://plm.example.com/techpacks")

    def test_fetch_returns_pdf_bytes(self) -> None:
        mock_response = MagicMock()
        mock_response.headers = {"content-type": "application/pdf"}
        mock_response.content = b"%PDF-1.4"

        with patch("src.services.acquisition.httpx.Client") as mock_client_cls:
            mock_client_cls.return_value.get.return_value = mock_response
            session = HttpAcquisitionEngine("https://plm.example.com/{key}.pdf").open_session(1)
            pdf = session.fetch("AB C")

        assert pdf == b"%PDF-1.4"
        mock_client_cls.return_value.get.assert_called_once_with("https://plm.example.com/AB%20C.pdf")

    def test_fetch_rejects_non_pdf(self) -> None:
        mock_response = MagicMock()
        mock_response.headers = {"content-type": "text/html"}
        mock_response.content = b"<html></html>"

        with patch("src.services.acquisition.httpx.Client") as mock_client_cls:
            mock_client_cls.return_value.get.return_value = mock_response
            session = HttpAcquisitionEngine("https://plm.example.com/{key}.pdf").open_session(1)
            with pytest.raises(AcquisitionError, match="not a PDF"):
                session.fetch("ABC")

    def test_fetch_wraps_http_errors(self) -> None:
        with patch("src.services.acquisition.httpx.Client") as mock_client_cls:
            mock_client_cls.return_value.get.side_effect = httpx.ConnectTimeout("timed out")
            session = HttpAcquisitionEngine("https://plm.example.com/{key}.pdf").open_session(1)
            with pytest.raises(AcquisitionError, match="timed out"):
                session.fetch("ABC")

    def test_recover_rebuilds_client(self) -> None:
        with patch("src.services.acquisition.httpx.Client") as mock_client_cls:
            session = HttpAcquisitionEngine("https://plm.example.com/{key}.pdf").open_session(1)
            session.recover()

        assert mock_client_cls.call_count == 2
        mock_client_cls.return_value.close.assert_called_once()

"""Unit tests for the job watchdog."""

import subprocess
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from src.models.job import utcnow
from src.services.job_store import JobStore
from src.services.watchdog import Watchdog, WorkerSpawner, is_retryable_error
from src.settings import WatchdogSettings


@pytest.fixture()
def spawner() -> MagicMock:
    mock = MagicMock(spec=WorkerSpawner)
    mock.start.return_value = MagicMock(pid=4242)
    return mock


def _settings(**overrides) -> WatchdogSettings:
    return WatchdogSettings(max_restart_attempts=3, **overrides)


def _later(minutes: int):
    return lambda: utcnow() + timedelta(minutes=minutes)


class TestIsRetryableError:
    @pytest.mark.parametrize(
        "message",
        [
            "Target page, context or browser has been closed",
            "ABC123: Navigation timeout of 30000 ms exceeded",
            "read ECONNRESET",
            "ConnectTimeout: timed out",
            "Unhandled thread exception in download_1: RuntimeError: boom",
        ],
    )
    def test_transient_faults_are_retryable(self, message: str) -> None:
        assert is_retryable_error(message) is True

    @pytest.mark.parametrize("message", [None, "", "InputReadError: cannot read input.csv"])
    def test_other_errors_are_not(self, message: str | None) -> None:
        assert is_retryable_error(message) is False


class TestDeadJobs:
    def test_restarts_stalled_processing_job(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.update("job-1", status="processing", progress_percent=40, current_style="download: ABC123")
        watchdog = Watchdog(store, spawner, _settings(), now=_later(10))

        watchdog.check_dead_jobs()

        spawner.start.assert_called_once_with("job-1")
        job = store.get("job-1")
        assert job.status == "processing"
        assert job.current_style == "download: ABC123"
        assert watchdog.attempts("job-1") == 1

    def test_ignores_job_with_recent_heartbeat(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.update("job-1", status="processing")
        watchdog = Watchdog(store, spawner, _settings())

        watchdog.check_dead_jobs()

        spawner.start.assert_not_called()

    def test_gives_up_after_max_attempts(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.update("job-1", status="processing", progress_percent=40, current_style="extract: ABC123")
        watchdog = Watchdog(store, spawner, _settings(), now=_later(10))

        for _ in range(3):
            watchdog.poll_once()
        assert spawner.start.call_count == 3

        watchdog.poll_once()
        watchdog.poll_once()

        assert spawner.start.call_count == 3
        job = store.get("job-1")
        assert job.status == "failed"
        assert job.error_message.startswith("Job crashed 3 times and was not restarted.")
        assert "Last progress: 40% at extract: ABC123" in job.error_message
        assert watchdog.attempts("job-1") == 0

    def test_spawn_failure_still_counts_as_attempt(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.update("job-1", status="processing")
        spawner.start.side_effect = OSError("No such file or directory")
        watchdog = Watchdog(store, spawner, _settings(), now=_later(10))

        watchdog.check_dead_jobs()

        assert watchdog.attempts("job-1") == 1

    def test_store_error_is_logged_not_raised(self, mock_store: MagicMock, spawner: MagicMock) -> None:
        mock_store.find_stalled.side_effect = RuntimeError("connection refused")
        watchdog = Watchdog(mock_store, spawner, _settings())

        watchdog.check_dead_jobs()

        spawner.start.assert_not_called()


class TestFailedJobs:
    def test_restarts_recent_retryable_failure(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "AcquisitionError: ABC123: Navigation timeout")
        watchdog = Watchdog(store, spawner, _settings())

        watchdog.check_failed_jobs()

        spawner.start.assert_called_once_with("job-1")
        job = store.get("job-1")
        assert job.status == "processing"
        assert job.error_message is None

    def test_ignores_non_retryable_failure(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "InputReadError: cannot read input.csv")
        watchdog = Watchdog(store, spawner, _settings())

        watchdog.poll_once()

        spawner.start.assert_not_called()
        assert store.get("job-1").status == "failed"

    def test_ignores_old_failure(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "read ECONNRESET")
        watchdog = Watchdog(store, spawner, _settings(), now=_later(10))

        watchdog.check_failed_jobs()

        spawner.start.assert_not_called()

    def test_gives_up_on_job_that_keeps_failing(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.update("job-1", progress_percent=55, current_style="download: XYZ999")
        store.mark_failed("job-1", "read ECONNRESET")

        def crash_again(job_id: str) -> MagicMock:
            store.mark_failed(job_id, "read ECONNRESET")
            return MagicMock(pid=4242)

        spawner.start.side_effect = crash_again
        watchdog = Watchdog(store, spawner, _settings())

        for _ in range(6):
            watchdog.poll_once()

        assert spawner.start.call_count == 3
        job = store.get("job-1")
        assert job.status == "failed"
        assert job.error_message.startswith("Job crashed 3 times and was not restarted.")
        assert "Last progress: 55% at download: XYZ999" in job.error_message
        assert watchdog.attempts("job-1") == 0


class TestCleanup:
    def test_clears_attempts_for_finished_job(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "socket hang up")
        watchdog = Watchdog(store, spawner, _settings())
        watchdog.check_failed_jobs()
        assert watchdog.attempts("job-1") == 1

        store.update("job-1", status="ready_for_export")
        watchdog.cleanup_restart_attempts()

        assert watchdog.attempts("job-1") == 0

    def test_keeps_attempts_for_running_job(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "socket hang up")
        watchdog = Watchdog(store, spawner, _settings())
        watchdog.check_failed_jobs()

        watchdog.cleanup_restart_attempts()

        assert watchdog.attempts("job-1") == 1

    def test_keeps_attempts_for_recent_retryable_failure(self, store: JobStore, spawner: MagicMock) -> None:
        store.create("job-1")
        store.mark_failed("job-1", "socket hang up")
        watchdog = Watchdog(store, spawner, _settings())
        watchdog.check_failed_jobs()
        store.mark_failed("job-1", "socket hang up")

        watchdog.cleanup_restart_attempts()

        assert watchdog.attempts("job-1") == 1


class TestWorkerSpawner:
    def test_starts_detached_process(self) -> None:
        with patch("src.services.watchdog.subprocess.Popen") as mock_popen:
            WorkerSpawner(command=["python", "run_job.py"]).start("job-1")

        args, kwargs = mock_popen.call_args
        assert args[0] == ["python", "run_job.py", "job-1"]
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"] is subprocess.DEVNULL
        assert kwargs["stdin"] is subprocess.DEVNULL

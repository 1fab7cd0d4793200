"""Liveness heartbeat and process-wide crash handling for a running job."""

import logging
import os
import sys
import threading
from collections.abc import Callable
from types import TracebackType

from src.services.job_store import JobStore

logger = logging.getLogger(__name__)

ExcInfo = tuple[type[BaseException], BaseException, TracebackType | None]


class Heartbeat:
    """Background thread that refreshes the job's ``updated_at`` every *interval_seconds*.

    It runs independently of pipeline progress: the watchdog treats a stale
    heartbeat as a dead worker.
    """

    def __init__(self, store: JobStore, job_id: str, interval_seconds: float) -> None:
        self._store = store
        self._job_id = job_id
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="heartbeat", daemon=True)
        self._thread.start()
        logger.info("heartbeat started (every %.0fs)", self._interval)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._store.touch(self._job_id)
            except Exception as exc:
                logger.warning("heartbeat update failed: %s", exc)


class CrashGuard:
    """Marks the job failed and exits when the process hits an unrecoverable fault.

    ``install()`` hooks both ``sys.excepthook`` (uncaught exceptions in the main
    thread) and ``threading.excepthook`` (exceptions nobody observed in other
    threads). Either one records the failure on the job, stops the heartbeat
    and exits with status 1, even if the job store itself is unreachable.
    """

    def __init__(
        self,
        store: JobStore,
        job_id: str,
        heartbeat: Heartbeat | None = None,
        exit_fn: Callable[[int], None] = os._exit,
    ) -> None:
        self._store = store
        self._job_id = job_id
        self._heartbeat = heartbeat
        self._exit = exit_fn
        self._fired = threading.Event()
        self._prev_excepthook = sys.excepthook
        self._prev_threading_excepthook = threading.excepthook

    def install(self) -> None:
        self._prev_excepthook = sys.excepthook
        self._prev_threading_excepthook = threading.excepthook
        sys.excepthook = self._on_uncaught
        threading.excepthook = self._on_thread_exception

    def uninstall(self) -> None:
        sys.excepthook = self._prev_excepthook
        threading.excepthook = self._prev_threading_excepthook

    def _on_uncaught(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        self.fail(f"Uncaught exception: {exc_type.__name__}: {exc}", (exc_type, exc, tb))

    def _on_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        exc_info: ExcInfo | None = None
        if args.exc_value is not None:
            exc_info = (args.exc_type, args.exc_value, args.exc_traceback)
        self.fail(
            f"Unhandled thread exception in {thread_name}: {args.exc_type.__name__}: {args.exc_value}",
            exc_info,
        )

    def fail(self, message: str, exc_info: ExcInfo | None = None) -> None:
        """Record *message* on the job as a failure, stop the heartbeat and exit(1)."""
        if self._fired.is_set():
            return
        self._fired.set()
        logger.critical("job %s failed: %s", self._job_id, message, exc_info=exc_info)
        try:
            self._store.mark_failed(self._job_id, message)
        except Exception as exc:
            logger.error("could not mark job %s failed: %s", self._job_id, exc)
        if self._heartbeat is not None:
            self._heartbeat.stop()
        self._exit(1)

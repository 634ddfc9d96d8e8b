### jobview/exports/scheduler.py

"""
Export Scheduler - bounded worker pool for export tasks.

Admission is driven by ticks: when a task is created (``wake``), when a
worker finishes, and periodically from the background loop. Each tick claims
the oldest PENDING tasks while slots are free. The claim is the repository's
compare-and-set, so a task is never picked up twice even when several
schedulers share one database.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from jobview.exports.cancellation import CancellationToken
from jobview.exports.models import ExportStatus
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.runner import ExportRunner
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


class ExportScheduler:
    """
    Owns the worker pool, the in-flight task map and the admission loop.

    Construct one per process and pass it to whatever needs to submit or
    cancel work; there is no module level instance.
    """

    def __init__(
        self,
        repository: ExportTaskRepository,
        runner: ExportRunner,
        capacity: int,
        tick_interval: float = 5.0,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.repository = repository
        self.runner = runner
        self.capacity = capacity
        self.tick_interval = tick_interval

        self._executor = self._new_executor()
        self._executor_shut_down = False
        self._lock = threading.Lock()
        self._in_flight: Dict[str, CancellationToken] = {}
        self._reserved = 0
        self._futures: Dict[str, Future] = {}
        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """
        Admit PENDING tasks while slots are free. Returns how many were admitted.

        Database errors leave the task PENDING; it is retried on the next tick.
        """
        admitted = 0
        while not self._stopping.is_set():
            with self._lock:
                if len(self._in_flight) + self._reserved >= self.capacity:
                    break
                # Hold the slot while claiming so concurrent ticks cannot overshoot
                self._reserved += 1

            task = None
            try:
                task = self.repository.claim_next_pending()
            except SQLAlchemyError as e:
                logger.warning(f"Export admission deferred, task store unavailable: {e}")
            except Exception as e:
                logger.error(f"Export admission failed: {e}", exc_info=True)

            token = None
            with self._lock:
                self._reserved -= 1
                if task is not None:
                    token = CancellationToken(task.id, read_flag=self._cancel_flag_reader(task.id))
                    self._in_flight[task.id] = token

            if task is None:
                break

            try:
                future = self._executor.submit(self._run, task.id, token)
            except RuntimeError:
                # Pool shut down between claim and submit
                self._release(task.id)
                self._fail_unsubmitted(task.id)
                break

            with self._lock:
                if task.id in self._in_flight:
                    self._futures[task.id] = future
            admitted += 1
            logger.info("Admitted export task", task_id=task.id, active=self.active_count)

        return admitted

    def wake(self) -> None:
        """Request an admission tick as soon as possible."""
        self._wakeup.set()

    def signal_cancel(self, task_id: str) -> bool:
        """Set the in-process cancellation token, if the task runs here."""
        with self._lock:
            token = self._in_flight.get(task_id)
        if token is None:
            return False
        token.cancel()
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background admission loop, with a fresh pool after a stop."""
        if self.running:
            return
        if self._executor_shut_down:
            self._executor = self._new_executor()
            self._executor_shut_down = False
        self._stopping.clear()
        self._loop_thread = threading.Thread(
            target=self._loop, name="export-scheduler", daemon=True
        )
        self._loop_thread.start()
        logger.info("Export scheduler started", capacity=self.capacity, tick_interval=self.tick_interval)

    def stop(self, wait: bool = True) -> None:
        """
        Stop admitting work and shut the pool down.

        Running tasks are left to finish; with ``wait`` the call blocks until
        they have reached a terminal status.
        """
        self._stopping.set()
        self._wakeup.set()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=self.tick_interval + 5)
            self._loop_thread = None

        self._executor.shutdown(wait=wait)
        self._executor_shut_down = True
        logger.info("Export scheduler stopped")

    def wait_idle(self, timeout: float = None) -> bool:
        """Block until no task is in flight (used by tests and shutdown hooks)."""
        with self._lock:
            futures = list(self._futures.values())
        for future in futures:
            try:
                future.result(timeout=timeout)
            except Exception:
                return False
        return self.active_count == 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.capacity, thread_name_prefix="export-worker")

    def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Export scheduler tick failed: {e}", exc_info=True)
            self._wakeup.wait(timeout=self.tick_interval)
            self._wakeup.clear()

    def _run(self, task_id: str, token: CancellationToken) -> ExportStatus:
        try:
            return self.runner.run(task_id, token)
        finally:
            self._release(task_id)
            # A slot just freed up
            self._wakeup.set()

    def _release(self, key: str) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            self._futures.pop(key, None)

    def _cancel_flag_reader(self, task_id: str):
        def read_flag() -> bool:
            try:
                return self.repository.is_cancel_requested(task_id)
            except SQLAlchemyError as e:
                logger.warning(f"Could not read cancel flag for export task {task_id}: {e}")
                return False
        return read_flag

    def _fail_unsubmitted(self, task_id: str) -> None:
        self.repository.transition(
            task_id,
            [ExportStatus.RUNNING],
            ExportStatus.FAILED,
            error_message="Export worker pool was shut down before the task started",
        )

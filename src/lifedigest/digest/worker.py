"""Background loop that selects files and hands them to the coordinator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from datetime import datetime, timedelta, timezone
from enum import Enum

from lifedigest.config import AppConfig
from lifedigest.digest.coordinator import DigestCoordinator
from lifedigest.digest.messages import (
    DigestComplete,
    DigestRequest,
    DigestStarted,
    FileChange,
    InboundMessage,
    OutboundMessage,
    Ready,
    Shutdown,
    ShutdownComplete,
)
from lifedigest.index.storage import SQLiteDigestStore

LOGGER = logging.getLogger(__name__)


class WorkerState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    PROCESSING = "locked-processing"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class _Outcome(Enum):
    IDLE = "idle"
    DEFERRED = "deferred"
    SUCCESS = "success"
    FAILURE = "failure"


def calculate_failure_delay(failures: int, base: float, cap: float) -> float:
    """Exponential backoff: ``base * 2**(failures - 1)``, never above ``cap``."""
    if failures <= 0:
        return 0.0
    # Clamp the exponent so long failure streaks cannot overflow.
    return float(min(base * 2 ** min(failures - 1, 62), cap))


class DigestWorker:
    """Single-file-at-a-time digest scheduler.

    The host talks to the worker through two queues: ``post()`` feeds the
    inbox, and status messages are put on ``outbox``. Only one file is ever
    processed at a time; the per-file lock in the store keeps other processes
    away from the same path.
    """

    def __init__(
        self,
        store: SQLiteDigestStore,
        coordinator: DigestCoordinator,
        config: AppConfig,
        outbox: asyncio.Queue | None = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.config = config
        self.outbox: asyncio.Queue = outbox if outbox is not None else asyncio.Queue()
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.state = WorkerState.IDLE
        self.consecutive_failures = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Task | None = None
        self._last_sweep: float | None = None
        self._shutdown_reported = False

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # Lifecycle

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="digest-worker")
        return self._task

    async def stop(self, grace: float | None = None) -> None:
        """Ask the loop to stop and wait up to ``grace`` seconds for the current iteration."""
        self._stop_event.set()
        grace = self.config.shutdown_grace if grace is None else grace
        task = self._task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=grace)
            except asyncio.TimeoutError:
                LOGGER.warning("Digest worker did not stop within %.1fs, cancelling", grace)
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._report_shutdown()

    async def join(self) -> None:
        """Wait until the loop has finished, including a stop already in flight."""
        if self._task is not None:
            await asyncio.wait({self._task})
        if self._stopping is not None:
            await self._stopping

    def post(self, message: InboundMessage) -> None:
        if isinstance(message, Shutdown):
            # Bounded by shutdown_grace even when the current iteration hangs.
            self._stop_event.set()
            task = self._task
            if task is not None and not task.done() and self._stopping is None:
                self._stopping = task.get_loop().create_task(self.stop())
        self.inbox.put_nowait(message)

    def _emit(self, message: OutboundMessage) -> None:
        self.outbox.put_nowait(message)

    def _report_shutdown(self) -> None:
        if self._shutdown_reported:
            return
        self._shutdown_reported = True
        self.state = WorkerState.STOPPED
        self._emit(ShutdownComplete())

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early once stop is requested."""
        if seconds <= 0 or self.stopped:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    # Main loop

    async def run(self) -> None:
        self._emit(Ready())
        LOGGER.info("Digest worker ready, starting in %.1fs", self.config.start_delay)
        try:
            await self._sleep(self.config.start_delay)
            if not self.stopped:
                self.backfill_placeholders()

            while not self.stopped:
                await self._drain_inbox()
                if self.stopped:
                    break

                try:
                    self._sweep_if_due()
                    outcome = await self._iterate()
                except Exception:
                    LOGGER.exception("Digest loop iteration failed")
                    outcome = _Outcome.FAILURE

                await self._after(outcome)
        finally:
            self._report_shutdown()
            LOGGER.info("Digest worker stopped")

    async def _iterate(self) -> _Outcome:
        self.state = WorkerState.SELECTING
        paths = self.store.find_files_needing_digestion(1)
        if not paths:
            return _Outcome.IDLE

        path = paths[0]
        if self.store.is_locked(path):
            LOGGER.debug("Skipping locked file %s", path)
            return _Outcome.DEFERRED

        success = await self.process_locked(path)
        if success is None:
            return _Outcome.DEFERRED
        return _Outcome.SUCCESS if success else _Outcome.FAILURE

    async def _after(self, outcome: _Outcome) -> None:
        if outcome is _Outcome.SUCCESS:
            self.consecutive_failures = 0
            self.state = WorkerState.IDLE
            return
        if outcome is _Outcome.IDLE:
            self.consecutive_failures = 0
            self.state = WorkerState.IDLE
            await self._sleep(self.config.idle_sleep)
            return
        if outcome is _Outcome.DEFERRED:
            self.state = WorkerState.IDLE
            await self._sleep(self.config.idle_sleep)
            return

        self.consecutive_failures += 1
        delay = calculate_failure_delay(
            self.consecutive_failures,
            self.config.failure_base_delay,
            self.config.failure_max_delay,
        )
        self.state = WorkerState.BACKOFF
        LOGGER.info(
            "Backing off %.1fs after %d consecutive failures", delay, self.consecutive_failures
        )
        await self._sleep(delay)

    async def process_locked(
        self, path: str, *, reset: bool = False, digester: str | None = None
    ) -> bool | None:
        """Process ``path`` under its lock.

        Returns None if another worker holds the lock, otherwise whether the
        file ended up without failed digests.
        """
        if not self.store.acquire_lock(path):
            LOGGER.debug("Lock for %s already held", path)
            return None

        self.state = WorkerState.PROCESSING
        success = False
        try:
            self._emit(DigestStarted(file_path=path))
            try:
                await self.coordinator.process_file(path, reset=reset, digester=digester)
                success = not self.store.has_failed_digests(path)
            finally:
                self._emit(DigestComplete(file_path=path, success=success))
        finally:
            self.store.release_lock(path)
        return success

    def _sweep_if_due(self) -> None:
        now = time.monotonic()
        if self._last_sweep is not None and now - self._last_sweep < self.config.stale_sweep_interval:
            return
        self._last_sweep = now

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.config.stale_digest_threshold)
        reset = self.store.reset_stale_in_progress_digests(cutoff)
        if reset:
            LOGGER.warning("Reset %d stale in-progress digests", reset)
        self.store.cleanup_stale_locks(self.config.stale_lock_threshold)

    # Messages

    async def _drain_inbox(self) -> None:
        while not self.inbox.empty():
            message = self.inbox.get_nowait()
            try:
                await self.handle_message(message)
            except Exception:
                LOGGER.exception("Failed to handle %s", message.type)

    async def handle_message(self, message: InboundMessage) -> None:
        if isinstance(message, Shutdown):
            self._stop_event.set()
        elif isinstance(message, DigestRequest):
            await self.process_locked(message.file_path, reset=message.reset, digester=message.digester)
        elif isinstance(message, FileChange):
            await self.handle_file_change(message)
        else:
            LOGGER.warning("Ignoring unknown message %r", message)

    async def handle_file_change(self, change: FileChange) -> None:
        path = change.file_path
        if change.is_new:
            self.coordinator.ensure_all_digesters(path)
            await self.process_locked(path)
        elif change.content_changed:
            self.coordinator.ensure_all_digesters(path)
            await self.process_locked(path, reset=True)
        elif path in self.store.find_files_needing_digestion(100):
            await self.process_locked(path)

    def backfill_placeholders(self) -> int:
        """Create missing placeholders for every known file."""
        created = 0
        for file in self.store.list_files():
            created += self.coordinator.ensure_all_digesters(file.path)
        if created:
            LOGGER.info("Backfilled %d digest placeholders", created)
        return created


async def _serve(worker: DigestWorker) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, worker.post, Shutdown())

    worker.start()
    try:
        await worker.join()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)


def run_worker(config: AppConfig) -> None:
    """Run the digest worker until SIGINT or SIGTERM.

    Failing to open the store is fatal and propagates to the caller.
    """
    from lifedigest.runtime import build_coordinator, open_store

    store = open_store(config)
    try:
        coordinator = build_coordinator(config, store)
        try:
            asyncio.run(_serve(DigestWorker(store, coordinator, config)))
        finally:
            coordinator.close()
    finally:
        store.close()

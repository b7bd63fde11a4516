"""Periodic watchdog for job lifecycle invariants.

On every tick the archiver and the timeout invalidator are started side by
side; neither waits for the other and a failure in one does not affect the
other.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TYPE_CHECKING

from loguru import logger

from jobwarden.models import DEFAULT_INTERVAL_MS, SweepSummary

if TYPE_CHECKING:
    from jobwarden.core.archiver import JobArchiver
    from jobwarden.core.invalidator import JobTimeoutInvalidator
    from jobwarden.db import Database
    from jobwarden.models import JobWardenConfig


class WatchdogScheduler:
    """Runs the job sweeps on a fixed interval.

    Stopping only clears the interval: sweeps already started by the last
    tick run to completion on their own.
    """

    def __init__(
        self,
        archiver: "JobArchiver",
        invalidator: "JobTimeoutInvalidator",
        interval_ms: int = DEFAULT_INTERVAL_MS,
        on_sweep_complete: Callable[[SweepSummary], None] | None = None,
    ):
        """Initialize the watchdog.

        Args:
            archiver: Archives expired completed jobs
            invalidator: Requeues timed out jobs
            interval_ms: Default interval between ticks (milliseconds)
            on_sweep_complete: Callback receiving every sweep summary
        """
        self._archiver = archiver
        self._invalidator = invalidator
        self._default_interval_ms = interval_ms
        self._on_sweep_complete = on_sweep_complete
        self._interval_task: asyncio.Task | None = None
        self._interval_ms: int | None = None
        self._in_flight: set[asyncio.Task] = set()

    def start_periodic_update(self, interval_ms: int | None = None) -> None:
        """Start (or restart) the periodic sweeps.

        Must be called from a running event loop. A previous interval, if
        any, is stopped first.
        """
        delay_ms = interval_ms or self._default_interval_ms
        if delay_ms <= 0:
            raise ValueError(f"interval must be positive, got {delay_ms}ms")

        self.stop_periodic_update()

        self._interval_ms = delay_ms
        self._interval_task = asyncio.create_task(self._run(delay_ms / 1000))
        logger.info(f"Watchdog started (interval: {delay_ms}ms)")

    def stop_periodic_update(self) -> None:
        """Stop the periodic sweeps. Does nothing if not running."""
        if self._interval_task is None:
            return

        self._interval_task.cancel()
        self._interval_task = None
        self._interval_ms = None
        logger.info("Watchdog stopped")

    @property
    def is_running(self) -> bool:
        """Check if the periodic sweeps are scheduled."""
        return self._interval_task is not None and not self._interval_task.done()

    @property
    def archiver(self) -> "JobArchiver":
        return self._archiver

    @property
    def invalidator(self) -> "JobTimeoutInvalidator":
        return self._invalidator

    @property
    def interval_ms(self) -> int | None:
        """Current interval, or None when stopped."""
        return self._interval_ms

    @property
    def in_flight(self) -> int:
        """Number of sweeps still running from past ticks."""
        return len(self._in_flight)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for the sweeps and storage cleanups already started.

        Meant for shutdown, after stop_periodic_update(). Work still running
        when the timeout expires is left alone; a sweep cancelled later
        unlocks the jobs it had claimed.

        Returns:
            True if everything finished within ``timeout`` seconds
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        def remaining() -> float | None:
            return None if deadline is None else max(0.0, deadline - loop.time())

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} in-flight sweep(s)")
            _, pending = await asyncio.wait(set(self._in_flight), timeout=remaining())
            if pending:
                logger.warning(f"{len(pending)} sweep(s) still running after {timeout}s")
                return False

        if not self._archiver.pending_cleanups:
            return True

        cleanups = asyncio.ensure_future(self._archiver.wait_for_cleanups())
        _, pending = await asyncio.wait({cleanups}, timeout=remaining())
        if pending:
            logger.warning(f"Storage cleanup still running after {timeout}s")
            return False
        return True

    async def _run(self, delay: float) -> None:
        """Interval loop: the first tick fires after one full interval."""
        while True:
            await asyncio.sleep(delay)
            self._tick()

    def _tick(self) -> list[asyncio.Task]:
        """Start both sweeps as independent tasks."""
        tasks = [
            self._spawn(self._archiver.name, self._archiver.sweep_archivable),
            self._spawn(self._invalidator.name, self._invalidator.sweep_timed_out),
        ]
        return tasks

    def _spawn(
        self,
        name: str,
        sweep: Callable[[], Awaitable[SweepSummary]],
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run_sweep(name, sweep))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_sweep(
        self,
        name: str,
        sweep: Callable[[], Awaitable[SweepSummary]],
    ) -> SweepSummary | None:
        try:
            summary = await sweep()
        except Exception as e:
            logger.error(f"Watchdog {name} sweep failed: {e}")
            return None

        if self._on_sweep_complete:
            try:
                self._on_sweep_complete(summary)
            except Exception as e:
                logger.error(f"Error in sweep callback: {e}")
        return summary


def create_watchdog(
    config: "JobWardenConfig",
    db: "Database | None" = None,
    on_sweep_complete: Callable[[SweepSummary], None] | None = None,
) -> WatchdogScheduler:
    """Wire a watchdog and its sweeps from configuration."""
    from jobwarden.core.archiver import JobArchiver
    from jobwarden.core.cleaner import StorageCleaner
    from jobwarden.core.executor import ExecutorClient
    from jobwarden.core.invalidator import JobTimeoutInvalidator
    from jobwarden.core.storage import create_object_store
    from jobwarden.core.store import SQLiteJobStore
    from jobwarden.db import Database

    store = SQLiteJobStore(db or Database(config.database.path))
    cleaner = StorageCleaner(create_object_store(config.storage))
    archiver = JobArchiver(store, cleaner, config.watchdog)
    invalidator = JobTimeoutInvalidator(
        store,
        config.watchdog,
        executor=ExecutorClient(timeout=config.watchdog.cancel_timeout),
    )
    return WatchdogScheduler(
        archiver,
        invalidator,
        interval_ms=config.watchdog.interval,
        on_sweep_complete=on_sweep_complete,
    )

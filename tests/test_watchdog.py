"""Tests for WatchdogScheduler."""

import asyncio

import pytest

from jobwarden.core.archiver import JobArchiver
from jobwarden.core.invalidator import JobTimeoutInvalidator
from jobwarden.core.watchdog import WatchdogScheduler, create_watchdog
from jobwarden.errors import StoreError
from jobwarden.models import (
    DEFAULT_INTERVAL_MS,
    JobOutcome,
    JobStatus,
    JobWardenConfig,
    StorageConfig,
    SweepSummary,
)

from conftest import hours_ago, make_job


class FakeSweep:
    """Sweep stub counting calls, optionally slow or failing."""

    def __init__(self, name, delay=0.0, error=None):
        self.name = name
        self.calls = 0
        self.finished = 0
        self.delay = delay
        self.error = error
        self.pending_cleanups = 0

    async def _sweep(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.finished += 1
        return SweepSummary(sweep=self.name)

    async def sweep_archivable(self):
        return await self._sweep()

    async def sweep_timed_out(self):
        return await self._sweep()


class TestWatchdogScheduler:
    """Tests for the periodic lifecycle."""

    @pytest.mark.asyncio
    async def test_ticks_fire_both_sweeps(self):
        archiver = FakeSweep("archiver")
        invalidator = FakeSweep("invalidator")
        summaries = []
        watchdog = WatchdogScheduler(archiver, invalidator, on_sweep_complete=summaries.append)

        watchdog.start_periodic_update(20)
        await asyncio.sleep(0.11)
        watchdog.stop_periodic_update()

        assert archiver.calls >= 2
        assert invalidator.calls >= 2
        assert {s.sweep for s in summaries} == {"archiver", "invalidator"}

    @pytest.mark.asyncio
    async def test_failure_in_one_sweep_does_not_block_other(self):
        archiver = FakeSweep("archiver", error=StoreError("store unreachable"))
        invalidator = FakeSweep("invalidator")
        watchdog = WatchdogScheduler(archiver, invalidator)

        tasks = watchdog._tick()
        results = await asyncio.gather(*tasks)

        assert results[0] is None
        assert results[1].sweep == "invalidator"
        assert invalidator.finished == 1

    @pytest.mark.asyncio
    async def test_sweeps_run_concurrently(self):
        """A slow archiver does not delay the invalidator."""
        archiver = FakeSweep("archiver", delay=0.2)
        invalidator = FakeSweep("invalidator")
        watchdog = WatchdogScheduler(archiver, invalidator)

        tasks = watchdog._tick()
        await asyncio.sleep(0.05)

        assert invalidator.finished == 1
        assert archiver.finished == 0
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver"), FakeSweep("invalidator"))

        watchdog.start_periodic_update(1000)
        first = watchdog._interval_task
        watchdog.start_periodic_update(500)
        await asyncio.sleep(0.01)

        assert first.cancelled()
        assert watchdog.is_running
        assert watchdog.interval_ms == 500
        watchdog.stop_periodic_update()

    @pytest.mark.asyncio
    async def test_default_interval(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver"), FakeSweep("invalidator"))
        watchdog.start_periodic_update()

        assert watchdog.interval_ms == DEFAULT_INTERVAL_MS
        watchdog.stop_periodic_update()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver"), FakeSweep("invalidator"))

        watchdog.stop_periodic_update()
        watchdog.start_periodic_update(1000)
        watchdog.stop_periodic_update()
        watchdog.stop_periodic_update()

        assert not watchdog.is_running
        assert watchdog.interval_ms is None

    @pytest.mark.asyncio
    async def test_stop_leaves_in_flight_sweeps_running(self):
        archiver = FakeSweep("archiver", delay=0.1)
        invalidator = FakeSweep("invalidator", delay=0.1)
        watchdog = WatchdogScheduler(archiver, invalidator)

        watchdog.start_periodic_update(10)
        await asyncio.sleep(0.03)
        watchdog.stop_periodic_update()
        assert watchdog.in_flight >= 2

        await asyncio.sleep(0.15)
        assert archiver.finished >= 1
        assert invalidator.finished >= 1
        assert watchdog.in_flight == 0

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_sweeps(self):
        archiver = FakeSweep("archiver", delay=0.05)
        invalidator = FakeSweep("invalidator", delay=0.05)
        watchdog = WatchdogScheduler(archiver, invalidator)

        watchdog.start_periodic_update(10)
        await asyncio.sleep(0.015)
        watchdog.stop_periodic_update()

        assert await watchdog.drain(timeout=1) is True
        assert watchdog.in_flight == 0
        assert archiver.finished == archiver.calls
        assert invalidator.finished == invalidator.calls

    @pytest.mark.asyncio
    async def test_drain_gives_up_after_timeout(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver", delay=1), FakeSweep("invalidator"))

        tasks = watchdog._tick()
        assert await watchdog.drain(timeout=0.05) is False
        assert not tasks[0].done()

        tasks[0].cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_drain_without_work_returns_immediately(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver"), FakeSweep("invalidator"))
        assert await watchdog.drain(timeout=0) is True

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        watchdog = WatchdogScheduler(FakeSweep("archiver"), FakeSweep("invalidator"))
        with pytest.raises(ValueError):
            watchdog.start_periodic_update(-5)


class TestCreateWatchdog:
    """End-to-end wiring from configuration."""

    @pytest.mark.asyncio
    async def test_tick_archives_and_requeues(self, db, tmp_path):
        config = JobWardenConfig(storage=StorageConfig(root=tmp_path / "storage"))
        config.watchdog.retry_delay = 0
        db.save_job(make_job("done", JobStatus.COMPLETED, end_date=hours_ago(48)))
        db.save_job(make_job("stuck", JobStatus.SCHEDULED, start_date=hours_ago(10)))
        summaries = []

        watchdog = create_watchdog(config, db=db, on_sweep_complete=summaries.append)
        assert isinstance(watchdog.archiver, JobArchiver)
        assert isinstance(watchdog.invalidator, JobTimeoutInvalidator)

        await asyncio.gather(*watchdog._tick())
        await watchdog.archiver.wait_for_cleanups()

        outcomes = {r.job_id: r.outcome for s in summaries for r in s.results}
        assert outcomes == {"done": JobOutcome.ARCHIVED, "stuck": JobOutcome.REQUEUED}
        assert db.get_archived("done") is not None
        assert db.get_job("stuck").status == JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_drain_waits_for_storage_cleanup(self, db, tmp_path):
        config = JobWardenConfig(storage=StorageConfig(root=tmp_path / "storage"))
        db.save_job(make_job("done", JobStatus.COMPLETED, end_date=hours_ago(48), input=["a.bin"]))
        (tmp_path / "storage" / "done_input").mkdir(parents=True)
        (tmp_path / "storage" / "done_input" / "a.bin").write_text("data")

        watchdog = create_watchdog(config, db=db)
        watchdog._tick()

        assert await watchdog.drain(timeout=1) is True
        assert watchdog.archiver.pending_cleanups == 0
        assert not (tmp_path / "storage" / "done_input").exists()

"""Shared machinery for the periodic job sweeps."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from jobwarden.core.locks import StatusLock
from jobwarden.core.retry import RetryPolicy
from jobwarden.models import Job, JobFilter, JobOutcome, JobResult, JobUpdate, SweepSummary

if TYPE_CHECKING:
    from jobwarden.core.store import JobStore
    from jobwarden.models import WatchdogConfig


class JobSweep(ABC):
    """Selects candidate jobs and processes each one independently.

    Every candidate yields exactly one JobResult; a failure on one job never
    stops the others. At most ``max_concurrency`` jobs are processed at once.
    A job claimed by a sweep that gets cancelled is unlocked before the
    cancellation propagates.
    """

    name = "sweep"

    def __init__(
        self,
        store: "JobStore",
        config: "WatchdogConfig",
        lock: StatusLock | None = None,
    ):
        self._store = store
        self._config = config
        self._lock = lock or StatusLock(
            store,
            RetryPolicy(config.release_retries, config.retry_delay),
        )

    @abstractmethod
    def candidate_filter(self, now: datetime) -> JobFilter:
        """Filter selecting the jobs this sweep acts on."""
        pass

    @abstractmethod
    async def process(self, job: Job) -> JobResult:
        """Claim and act on a single candidate."""
        pass

    async def run(self) -> SweepSummary:
        """Run one pass over the current candidates.

        Raises:
            StoreError: if the candidates cannot be retrieved
        """
        summary = SweepSummary(sweep=self.name)
        flt = self.candidate_filter(summary.started_at)

        try:
            jobs = await self._store.retrieve_jobs(flt)
        except Exception as e:
            logger.error(f"{self.name}: failed to retrieve candidates: {e}")
            raise

        if jobs:
            logger.info(f"{self.name}: {len(jobs)} candidate job(s)")

        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def bounded(job: Job) -> JobResult:
            async with semaphore:
                return await self._process_safely(job)

        summary.results = list(await asyncio.gather(*(bounded(job) for job in jobs)))
        summary.finished_at = datetime.now()

        if jobs:
            logger.info(str(summary))
        return summary

    async def _process_safely(self, job: Job) -> JobResult:
        try:
            return await self.process(job)
        except Exception as e:
            logger.error(f"{self.name}: unexpected error processing job '{job.id}': {e}")
            return JobResult(job_id=job.id, outcome=JobOutcome.FAILED, reason=str(e))

    async def _release_interrupted(self, job: Job, update: JobUpdate | None = None) -> None:
        """Give back the lock of a claimed job whose processing was cancelled.

        The release runs shielded so that it completes even while the
        surrounding task is being torn down.
        """
        logger.warning(f"{self.name}: processing of job '{job.id}' interrupted, releasing its lock")
        try:
            released = await asyncio.shield(self._lock.release(job.id, update))
        except Exception as e:
            logger.error(f"{self.name}: job '{job.id}' left locked after interruption: {e}")
            return

        if not released:
            logger.error(f"{self.name}: job '{job.id}' was no longer locked after interruption")

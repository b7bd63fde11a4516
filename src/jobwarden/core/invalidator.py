"""Requeueing of jobs that stayed scheduled or running for too long."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from jobwarden.core.executor import CancelResult, ExecutorClient
from jobwarden.core.locks import StatusLock
from jobwarden.core.sweep import JobSweep
from jobwarden.errors import StoreError
from jobwarden.models import (
    Job,
    JobFilter,
    JobOutcome,
    JobResult,
    JobStage,
    JobStatus,
    JobUpdate,
    SweepSummary,
)

if TYPE_CHECKING:
    from jobwarden.core.store import JobStore
    from jobwarden.models import WatchdogConfig


class JobTimeoutInvalidator(JobSweep):
    """Cancels and requeues jobs past their time budget.

    Requeueing happens whatever the cancel request returns: the scheduler
    must get the job back even when the executor is unreachable.
    """

    name = "invalidator"

    def __init__(
        self,
        store: "JobStore",
        config: "WatchdogConfig",
        executor: ExecutorClient | None = None,
        lock: StatusLock | None = None,
    ):
        super().__init__(store, config, lock)
        self._executor = executor or ExecutorClient(timeout=config.cancel_timeout)

    def candidate_filter(self, now: datetime) -> JobFilter:
        cutoff = now - timedelta(hours=self._config.jobs_timingout_time)
        return JobFilter(
            statuses=[JobStatus.SCHEDULED, JobStatus.RUNNING],
            status_lock=False,
            started_before=cutoff,
        )

    async def sweep_timed_out(self) -> SweepSummary:
        """Requeue every scheduled or running job started before the deadline."""
        return await self.run()

    async def process(self, job: Job) -> JobResult:
        try:
            claimed = await self._lock.claim(job)
        except StoreError as e:
            logger.error(f"Failed to lock timed out job '{job.id}': {e}")
            return JobResult(job_id=job.id, outcome=JobOutcome.FAILED, reason=str(e))

        if not claimed:
            return JobResult(job_id=job.id, outcome=JobOutcome.ALREADY_HANDLED)

        try:
            return await self._requeue_claimed(job)
        except asyncio.CancelledError:
            # The job is past its deadline either way; hand it back to the queue
            await self._release_interrupted(job, JobUpdate(status=JobStatus.QUEUED))
            raise

    async def _requeue_claimed(self, job: Job) -> JobResult:
        if job.status == JobStatus.RUNNING:
            await self._cancel(job)

        try:
            released = await self._lock.release(job.id, JobUpdate(status=JobStatus.QUEUED))
        except StoreError as e:
            logger.error(f"Failed to unlock and requeue job '{job.id}': {e}")
            return JobResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED_TO_UNLOCK,
                stage=JobStage.CLAIMED,
                reason=str(e),
            )

        if not released:
            return JobResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED_TO_UNLOCK,
                stage=JobStage.CLAIMED,
                reason="lock was no longer held",
            )

        logger.info(f"Timed out job '{job.id}' requeued")
        return JobResult(job_id=job.id, outcome=JobOutcome.REQUEUED, stage=JobStage.REQUEUED)

    async def _cancel(self, job: Job) -> CancelResult:
        try:
            result = await self._executor.cancel(job)
        except Exception as e:
            result = CancelResult(False, str(e))

        if result.ok:
            logger.info(f"Cancel request for job '{job.id}' accepted by {job.executor_url}")
        else:
            logger.warning(
                f"Cancel request for job '{job.id}' to {job.executor_url} failed: {result.message}"
            )
        return result

"""Archiving of completed jobs past their retention time.

Each candidate moves through: claimed -> archived -> cleaned up. Cleanup of
the job's storage containers runs in the background and never holds back
the archive outcome.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from jobwarden.core.cleaner import PurgeReport, StorageCleaner
from jobwarden.core.locks import StatusLock
from jobwarden.core.retry import RetryPolicy
from jobwarden.core.sweep import JobSweep
from jobwarden.errors import JobNotFoundError, StoreError
from jobwarden.models import (
    ArchiveRecord,
    Job,
    JobFilter,
    JobOutcome,
    JobResult,
    JobStage,
    JobStatus,
    SweepSummary,
)

if TYPE_CHECKING:
    from jobwarden.core.store import JobStore
    from jobwarden.models import WatchdogConfig


class JobArchiver(JobSweep):
    """Moves expired completed jobs to the archive and purges their files."""

    name = "archiver"

    def __init__(
        self,
        store: "JobStore",
        cleaner: StorageCleaner,
        config: "WatchdogConfig",
        lock: StatusLock | None = None,
    ):
        """Initialize the archiver.

        Args:
            store: Metadata store
            cleaner: Purges containers once a job is archived
            config: Watchdog configuration (retention, retries, concurrency)
            lock: Status lock, built from the store if not given
        """
        super().__init__(store, config, lock)
        self._cleaner = cleaner
        self._archive_policy = RetryPolicy(config.archive_retries, config.retry_delay)
        self._cleanup_tasks: set[asyncio.Task[list[PurgeReport]]] = set()

    def candidate_filter(self, now: datetime) -> JobFilter:
        cutoff = now - timedelta(hours=self._config.jobs_expired_status_time)
        return JobFilter(
            statuses=[JobStatus.COMPLETED],
            status_lock=False,
            ended_before=cutoff,
        )

    async def sweep_archivable(self) -> SweepSummary:
        """Archive every completed job whose end date is past retention."""
        return await self.run()

    async def process(self, job: Job) -> JobResult:
        try:
            claimed = await self._lock.claim(job)
        except StoreError as e:
            logger.error(f"Failed to lock job '{job.id}' for archiving: {e}")
            return JobResult(job_id=job.id, outcome=JobOutcome.FAILED, reason=str(e))

        if not claimed:
            return JobResult(job_id=job.id, outcome=JobOutcome.ALREADY_HANDLED)

        try:
            return await self._archive_claimed(job)
        except asyncio.CancelledError:
            await self._release_interrupted(job)
            raise

    async def _archive_claimed(self, job: Job) -> JobResult:
        try:
            record = await self._archive_policy.run(
                lambda: self._store.archive_job(job.id),
                f"Archiving job '{job.id}'",
                retry_on=(StoreError,),
                give_up_on=(JobNotFoundError,),
            )
        except JobNotFoundError as e:
            # Deleted out from under the lock; there is nothing left to unlock
            logger.warning(f"Job '{job.id}' disappeared before it could be archived")
            return JobResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED,
                stage=JobStage.CLAIMED,
                reason=str(e),
            )
        except Exception as e:
            logger.error(f"Failed to archive job '{job.id}': {e}")
            return await self._release_after_failure(job, str(e))

        logger.info(f"Job '{job.id}' archived")
        self._schedule_cleanup(record)
        return JobResult(job_id=job.id, outcome=JobOutcome.ARCHIVED, stage=JobStage.ARCHIVED)

    async def _release_after_failure(self, job: Job, reason: str) -> JobResult:
        """Unlock a job whose archive failed so a later sweep can retry it."""
        try:
            released = await self._lock.release(job.id)
        except StoreError as e:
            logger.error(f"Job '{job.id}' is left locked after a failed archive: {e}")
            return JobResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED_TO_UNLOCK,
                stage=JobStage.CLAIMED,
                reason=f"{reason}; unlock failed: {e}",
            )

        if not released:
            return JobResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED_TO_UNLOCK,
                stage=JobStage.CLAIMED,
                reason=reason,
            )
        return JobResult(
            job_id=job.id,
            outcome=JobOutcome.FAILED,
            stage=JobStage.RELEASED,
            reason=reason,
        )

    # =========================================================================
    # Storage cleanup
    # =========================================================================

    def _schedule_cleanup(self, record: ArchiveRecord) -> None:
        task = asyncio.create_task(self._cleanup(record))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _cleanup(self, record: ArchiveRecord) -> list[PurgeReport]:
        try:
            reports = list(await asyncio.gather(
                self._cleaner.purge(record.input_container, record.input),
                self._cleaner.purge(record.output_container, record.output),
            ))
        except Exception as e:
            logger.error(f"Storage cleanup for job '{record.id}' failed: {e}")
            return []

        if all(r.clean or r.skipped for r in reports):
            logger.debug(f"Job '{record.id}' cleaned up")
        else:
            logger.warning(f"Job '{record.id}' archived with leftover storage")
        return reports

    @property
    def pending_cleanups(self) -> int:
        """Number of cleanup tasks still running."""
        return len(self._cleanup_tasks)

    async def wait_for_cleanups(self) -> list[PurgeReport]:
        """Wait for every cleanup started so far and return their reports."""
        if not self._cleanup_tasks:
            return []
        results = await asyncio.gather(*list(self._cleanup_tasks))
        return [report for reports in results for report in reports]

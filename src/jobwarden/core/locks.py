"""Status lock on job records.

The ``status_lock`` flag of a job, flipped with a conditional update, is the
only mutual exclusion between watchdog replicas, schedulers and executors.
Ownership is decided by the modified count the store returns, never by a
separate read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from jobwarden.core.retry import RetryPolicy
from jobwarden.errors import StoreError
from jobwarden.models import Job, JobFilter, JobUpdate

if TYPE_CHECKING:
    from jobwarden.core.store import JobStore


class StatusLock:
    """Claims and releases the status lock of jobs."""

    def __init__(self, store: "JobStore", release_policy: RetryPolicy | None = None):
        """Initialize the status lock.

        Args:
            store: Metadata store performing the conditional updates
            release_policy: Retry policy for releasing a held lock
        """
        self._store = store
        self._release_policy = release_policy or RetryPolicy()

    async def claim(self, job: Job) -> bool:
        """Try to lock a job.

        The update only matches if the job is still unlocked and still in the
        status it had when it was selected.

        Returns:
            True if this caller now holds the lock, False on contention
        """
        modified = await self._store.update_job(
            JobFilter(job_id=job.id, statuses=[job.status], status_lock=False),
            JobUpdate(status_lock=True),
        )
        if modified == 1:
            return True

        logger.debug(f"Job '{job.id}' already claimed or transitioned by another actor")
        return False

    async def release(self, job_id: str, update: JobUpdate | None = None) -> bool:
        """Release a held lock, applying any extra fields in the same write.

        Store errors are retried per the release policy.

        Returns:
            True if the lock was released
        """
        fields = (update or JobUpdate()).fields()
        fields["status_lock"] = False
        release_update = JobUpdate(**fields)

        async def _release() -> int:
            return await self._store.update_job(
                JobFilter(job_id=job_id, status_lock=True),
                release_update,
            )

        modified = await self._release_policy.run(
            _release,
            f"Unlocking job '{job_id}'",
            retry_on=(StoreError,),
        )
        if modified != 1:
            logger.error(f"Job '{job_id}' was not locked when releasing it (modified={modified})")
            return False
        return True

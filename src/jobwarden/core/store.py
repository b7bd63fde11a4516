"""Metadata store interface used by the sweeps.

The watchdog only needs three primitives: query jobs, conditionally update
jobs (returning how many were modified), and move a job into the archive.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from jobwarden.errors import StoreError
from jobwarden.models import ArchiveRecord, Job, JobFilter, JobUpdate

if TYPE_CHECKING:
    from jobwarden.db import Database


class JobStore(ABC):
    """Abstract base class for metadata stores."""

    @abstractmethod
    async def retrieve_jobs(self, flt: JobFilter) -> list[Job]:
        """Get jobs matching a filter.

        Raises:
            StoreError: if the store cannot be queried
        """
        pass

    @abstractmethod
    async def update_job(self, flt: JobFilter, update: JobUpdate) -> int:
        """Update jobs matching a filter.

        Matching and writing must be atomic per record so that a filter on
        ``status_lock == False`` works as a compare-and-set.

        Returns:
            Number of records modified
        """
        pass

    @abstractmethod
    async def archive_job(self, job_id: str) -> ArchiveRecord:
        """Move a job from the live store to the archive.

        Either the record ends up archived or the job stays in the live
        store and an error is raised.
        """
        pass


class SQLiteJobStore(JobStore):
    """SQLite-based job store.

    Suitable for a single node, or several watchdog replicas sharing one
    database file.
    """

    def __init__(self, db: "Database"):
        """Initialize with database instance.

        Args:
            db: JobWarden database instance
        """
        self._db = db

    async def retrieve_jobs(self, flt: JobFilter) -> list[Job]:
        """Get jobs matching a filter."""
        try:
            return self._db.find_jobs(flt)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to retrieve jobs: {e}") from e

    async def update_job(self, flt: JobFilter, update: JobUpdate) -> int:
        """Update matching jobs."""
        try:
            return self._db.update_jobs(flt, update)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update jobs: {e}") from e

    async def archive_job(self, job_id: str) -> ArchiveRecord:
        """Archive a job."""
        try:
            return self._db.archive_job(job_id)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to archive job '{job_id}': {e}") from e

"""Tests for the sqlite metadata store."""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from jobwarden.core.store import SQLiteJobStore
from jobwarden.errors import JobNotFoundError, StoreError
from jobwarden.models import JobFilter, JobStatus, JobUpdate

from conftest import hours_ago, make_job


class TestDatabase:
    """Tests for Database."""

    def test_save_and_get_job(self, db):
        """Saved jobs should round-trip every field."""
        job = make_job(
            "J1",
            JobStatus.RUNNING,
            start_date=hours_ago(2),
            executor_ip="10.0.0.5",
            executor_port=9000,
            input=["a.bin", "b.bin"],
        )
        db.save_job(job)

        loaded = db.get_job("J1")
        assert loaded == job
        assert db.get_job("missing") is None

    def test_find_jobs_by_filter(self, db):
        """Filters should combine with AND."""
        db.save_job(make_job("old", JobStatus.COMPLETED, end_date=hours_ago(48)))
        db.save_job(make_job("new", JobStatus.COMPLETED, end_date=hours_ago(1)))
        db.save_job(make_job("locked", JobStatus.COMPLETED, end_date=hours_ago(48), status_lock=True))
        db.save_job(make_job("no-end", JobStatus.COMPLETED))
        db.save_job(make_job("running", JobStatus.RUNNING, start_date=hours_ago(48)))

        jobs = db.find_jobs(JobFilter(
            statuses=[JobStatus.COMPLETED],
            status_lock=False,
            ended_before=hours_ago(24),
        ))
        assert [j.id for j in jobs] == ["old"]

    def test_aware_timestamps_are_stored_as_local_time(self, db):
        """Offsets from other writers must not skew the cutoff comparison."""
        far_east = timezone(timedelta(hours=14))
        # 30h old, but its wall-clock text in +14:00 reads later than a naive 24h cutoff
        old_end = datetime.now(far_east) - timedelta(hours=30)
        recent_end = datetime.now(timezone.utc) - timedelta(hours=1)
        db.save_job(make_job("old", JobStatus.COMPLETED, end_date=old_end))
        db.save_job(make_job("recent", JobStatus.COMPLETED, end_date=recent_end))

        jobs = db.find_jobs(JobFilter(ended_before=hours_ago(24)))
        assert [j.id for j in jobs] == ["old"]

        loaded = db.get_job("old")
        assert loaded.end_date.tzinfo is None
        assert loaded.end_date == old_end.astimezone().replace(tzinfo=None)

    def test_aware_cutoff_is_normalized(self, db):
        db.save_job(make_job("old", JobStatus.COMPLETED, end_date=hours_ago(48)))

        cutoff = datetime.now(timezone(timedelta(hours=-10))) - timedelta(hours=24)
        jobs = db.find_jobs(JobFilter(ended_before=cutoff))
        assert [j.id for j in jobs] == ["old"]

    def test_empty_status_set_matches_nothing(self, db):
        db.save_job(make_job("J1", JobStatus.QUEUED))
        assert db.find_jobs(JobFilter(statuses=[])) == []

    def test_conditional_update_is_compare_and_set(self, db):
        """Only the first lock attempt should modify the record."""
        db.save_job(make_job("J1", JobStatus.COMPLETED))
        flt = JobFilter(job_id="J1", status_lock=False)

        assert db.update_jobs(flt, JobUpdate(status_lock=True)) == 1
        assert db.update_jobs(flt, JobUpdate(status_lock=True)) == 0
        assert db.get_job("J1").status_lock is True

    def test_update_without_fields_is_noop(self, db):
        db.save_job(make_job("J1", JobStatus.COMPLETED))
        assert db.update_jobs(JobFilter(job_id="J1"), JobUpdate()) == 0

    def test_archive_moves_record(self, db):
        """Archiving removes the live record and keeps its fields."""
        job = make_job("J1", JobStatus.COMPLETED, end_date=hours_ago(30), output=["out.txt"])
        db.save_job(job)
        db.update_jobs(JobFilter(job_id="J1"), JobUpdate(status_lock=True))

        record = db.archive_job("J1")

        assert db.get_job("J1") is None
        assert db.get_archived("J1") == record
        assert record.output == ["out.txt"]
        assert record.end_date == job.end_date
        assert record.status_lock is False
        assert db.count_archived() == 1

    def test_archive_missing_job_raises(self, db):
        with pytest.raises(JobNotFoundError):
            db.archive_job("missing")
        assert db.count_archived() == 0

    def test_archive_twice_keeps_live_record_on_failure(self, db):
        """A failed archive insert must leave the live record in place."""
        db.save_job(make_job("J1", JobStatus.COMPLETED))
        db.archive_job("J1")
        db.save_job(make_job("J1", JobStatus.COMPLETED))

        with pytest.raises(sqlite3.IntegrityError):
            db.archive_job("J1")
        assert db.get_job("J1") is not None


class TestSQLiteJobStore:
    """Tests for SQLiteJobStore error mapping."""

    def test_sqlite_errors_become_store_errors(self):
        db = MagicMock()
        db.find_jobs.side_effect = sqlite3.OperationalError("database is locked")
        db.update_jobs.side_effect = sqlite3.OperationalError("database is locked")
        db.archive_job.side_effect = sqlite3.OperationalError("disk I/O error")
        store = SQLiteJobStore(db)

        with pytest.raises(StoreError):
            asyncio.run(store.retrieve_jobs(JobFilter()))
        with pytest.raises(StoreError):
            asyncio.run(store.update_job(JobFilter(), JobUpdate(status_lock=True)))
        with pytest.raises(StoreError, match="J1"):
            asyncio.run(store.archive_job("J1"))

    def test_not_found_passes_through(self, store):
        with pytest.raises(JobNotFoundError):
            asyncio.run(store.archive_job("missing"))

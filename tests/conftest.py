"""Shared fixtures for JobWarden tests."""

from datetime import datetime, timedelta

import pytest

from jobwarden.core.cleaner import StorageCleaner
from jobwarden.core.storage import LocalObjectStore
from jobwarden.core.store import SQLiteJobStore
from jobwarden.db import Database
from jobwarden.models import Job, JobStatus, WatchdogConfig


def make_job(job_id: str, status: JobStatus, **fields) -> Job:
    """Build a job record with sensible defaults."""
    return Job(id=job_id, status=status, **fields)


def hours_ago(hours: float) -> datetime:
    return datetime.now() - timedelta(hours=hours)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    return Database(tmp_path / "jobs.db")


@pytest.fixture
def store(db):
    return SQLiteJobStore(db)


@pytest.fixture
def object_store(tmp_path):
    return LocalObjectStore(tmp_path / "storage")


@pytest.fixture
def cleaner(object_store):
    return StorageCleaner(object_store)


@pytest.fixture
def config():
    """Watchdog config without retry delays."""
    return WatchdogConfig(
        jobs_expired_status_time=24,
        jobs_timingout_time=5,
        retry_delay=0,
    )

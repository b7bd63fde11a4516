"""Pydantic models for JobWarden configuration and job records."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sweep interval used when none is configured or passed explicitly
DEFAULT_INTERVAL_MS = 60_000


class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    CREATED = "created"
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    ERROR = "error"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEAD = "dead"
    ARCHIVED = "archived"


class Job(BaseModel):
    """A job record as held in the live store."""

    id: str
    type: str = "generic"
    status: JobStatus = JobStatus.CREATED
    status_lock: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    executor_ip: str | None = None
    executor_port: int | None = None
    input: list[str] = Field(default_factory=list)
    output: list[str] = Field(default_factory=list)
    message: str | None = None

    @property
    def input_container(self) -> str:
        """Object storage container holding the job's input files."""
        return f"{self.id}_input"

    @property
    def output_container(self) -> str:
        """Object storage container holding the job's output files."""
        return f"{self.id}_output"

    @property
    def executor_url(self) -> str | None:
        """Base URL of the executor running this job, if it was scheduled."""
        if not self.executor_ip or not self.executor_port:
            return None
        return f"http://{self.executor_ip}:{self.executor_port}"


class ArchiveRecord(Job):
    """Immutable copy of a job persisted in the archive store."""

    model_config = ConfigDict(frozen=True)

    archived_at: datetime


class JobFilter(BaseModel):
    """Conditions on job records, combined with AND.

    Unset fields do not constrain the match.
    """

    job_id: str | None = None
    statuses: list[JobStatus] | None = None
    status_lock: bool | None = None
    ended_before: datetime | None = None
    started_before: datetime | None = None


class JobUpdate(BaseModel):
    """Partial update applied to matching job records."""

    status: JobStatus | None = None
    status_lock: bool | None = None

    def fields(self) -> dict[str, object]:
        """Fields explicitly set on this update."""
        return self.model_dump(exclude_none=True)


class JobOutcome(str, Enum):
    """Result of processing a single sweep candidate."""

    ARCHIVED = "archived"
    REQUEUED = "requeued"
    ALREADY_HANDLED = "already_handled"
    FAILED = "failed"
    FAILED_TO_UNLOCK = "failed_to_unlock"


class JobStage(str, Enum):
    """Last step a job reached during processing."""

    CANDIDATE = "candidate"
    CLAIMED = "claimed"
    ARCHIVED = "archived"
    REQUEUED = "requeued"
    RELEASED = "released"


class JobResult(BaseModel):
    """Outcome for one job in a sweep."""

    job_id: str
    outcome: JobOutcome
    stage: JobStage = JobStage.CANDIDATE
    reason: str | None = None


class SweepSummary(BaseModel):
    """Aggregated per-job outcomes for one sweep pass."""

    sweep: str
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None
    results: list[JobResult] = Field(default_factory=list)

    def count(self, outcome: JobOutcome) -> int:
        """Number of jobs that ended with the given outcome."""
        return sum(1 for r in self.results if r.outcome == outcome)

    def by_outcome(self) -> dict[str, int]:
        """Outcome counts keyed by outcome value."""
        return dict(Counter(r.outcome.value for r in self.results))

    @property
    def failed(self) -> list[JobResult]:
        """Results that did not reach a clean terminal step."""
        return [
            r for r in self.results
            if r.outcome in (JobOutcome.FAILED, JobOutcome.FAILED_TO_UNLOCK)
        ]

    def __str__(self) -> str:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(self.by_outcome().items()))
        return f"{self.sweep}: {len(self.results)} candidates ({counts or 'none'})"


# ============================================================================
# Configuration
# ============================================================================


class WatchdogConfig(BaseModel):
    """Sweep policy configuration."""

    jobs_expired_status_time: float = 24  # hours before completed jobs are archived
    jobs_timingout_time: float = 5  # hours a job may stay scheduled/running
    interval: int = DEFAULT_INTERVAL_MS  # milliseconds between sweeps
    max_concurrency: int = 16  # per-sweep in-flight jobs
    cancel_timeout: float = 10.0  # seconds
    archive_retries: int = 2
    release_retries: int = 3
    retry_delay: float = 1.0  # seconds
    shutdown_timeout: float = 30.0  # seconds to wait for in-flight sweeps on exit

    @field_validator("jobs_expired_status_time", "jobs_timingout_time")
    @classmethod
    def validate_hours(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0 hours")
        return v

    @field_validator("interval", "max_concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class DatabaseConfig(BaseModel):
    """Metadata store configuration."""

    path: Path | None = None  # defaults to ~/.jobwarden/jobwarden.db


class StorageBackend(str, Enum):
    """Object storage backend."""

    LOCAL = "local"
    S3 = "s3"


class StorageConfig(BaseModel):
    """Object storage configuration."""

    backend: StorageBackend = StorageBackend.LOCAL
    root: Path | None = None  # local backend: defaults to ~/.jobwarden/storage

    # S3 backend
    bucket: str | None = None
    region: str | None = None
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None


class DaemonConfig(BaseModel):
    """Process-level configuration."""

    log_level: str = "INFO"
    log_file: Path | None = None


class JobWardenConfig(BaseModel):
    """Main JobWarden configuration."""

    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)

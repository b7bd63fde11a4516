"""Exceptions raised by JobWarden."""

from __future__ import annotations


class JobWardenError(Exception):
    """Base class for JobWarden errors."""

    pass


class ConfigError(JobWardenError):
    """Configuration error."""

    pass


class StoreError(JobWardenError):
    """Metadata store query or update failed."""

    pass


class JobNotFoundError(StoreError):
    """The job is not present in the live store."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' not found")
        self.job_id = job_id


class StorageError(JobWardenError):
    """Object storage operation failed."""

    def __init__(self, container: str, name: str | None, message: str):
        target = f"{container}/{name}" if name else container
        super().__init__(f"{target}: {message}")
        self.container = container
        self.name = name

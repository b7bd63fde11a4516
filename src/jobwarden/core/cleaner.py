"""Best-effort removal of a job's files and container from object storage."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from jobwarden.core.storage import ObjectStore


@dataclass
class PurgeReport:
    """What a purge of one container achieved."""

    container: str
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # file -> error
    container_deleted: bool = False
    container_error: str | None = None
    skipped: bool = False

    @property
    def clean(self) -> bool:
        """True if every file and the container were removed."""
        return not self.skipped and not self.failed and self.container_deleted


class StorageCleaner:
    """Deletes a container's files, then the container itself.

    Failures are logged and reported, never raised and never retried.
    """

    def __init__(self, object_store: "ObjectStore"):
        self._store = object_store

    async def purge(self, container: str, files: list[str] | None) -> PurgeReport:
        """Delete every file in ``files`` from ``container``, then the container.

        The container delete is only issued once all file deletes have
        settled. A missing or empty file list is a no-op.
        """
        report = PurgeReport(container=container)

        if not files:
            logger.debug(f"No files recorded for container '{container}', skipping cleanup")
            report.skipped = True
            return report

        results = await asyncio.gather(
            *(self._store.delete_file(container, name) for name in files),
            return_exceptions=True,
        )

        for name, result in zip(files, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to delete file '{name}' from container '{container}': {result}")
                report.failed[name] = str(result)
            else:
                logger.debug(f"File '{name}' deleted from container '{container}'")
                report.deleted.append(name)

        try:
            await self._store.delete_container(container)
            report.container_deleted = True
            logger.info(
                f"Container '{container}' deleted "
                f"({len(report.deleted)}/{len(files)} files removed)"
            )
        except Exception as e:
            logger.warning(f"Failed to delete container '{container}': {e}")
            report.container_error = str(e)

        return report

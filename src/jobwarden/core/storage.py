"""Object storage backends holding job input and output files.

A container is a namespace of files named ``{job_id}_input`` or
``{job_id}_output``. Backends:
- local: one directory per container under a root path
- s3: one key prefix per container inside a single bucket
"""

from __future__ import annotations

import asyncio
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from jobwarden.config import DEFAULT_STORAGE_DIR
from jobwarden.errors import ConfigError, StorageError
from jobwarden.models import StorageBackend

if TYPE_CHECKING:
    from jobwarden.models import StorageConfig


class ObjectStore(ABC):
    """Abstract base class for object stores."""

    @abstractmethod
    async def delete_file(self, container: str, name: str) -> None:
        """Delete one file from a container.

        Raises:
            StorageError: if the delete failed
        """
        pass

    @abstractmethod
    async def delete_container(self, container: str) -> None:
        """Delete a container.

        Raises:
            StorageError: if the delete failed
        """
        pass


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store."""

    def __init__(self, root: Path):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _container_dir(self, container: str) -> Path:
        safe_name = container.replace("/", "_").replace("\\", "_")
        return self._root / safe_name

    def _file_path(self, container: str, name: str) -> Path:
        path = (self._container_dir(container) / name).resolve()
        if self._container_dir(container).resolve() not in path.parents:
            raise StorageError(container, name, "file name escapes its container")
        return path

    async def delete_file(self, container: str, name: str) -> None:
        path = self._file_path(container, name)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise StorageError(container, name, "no such file") from e
        except OSError as e:
            raise StorageError(container, name, str(e)) from e

    async def delete_container(self, container: str) -> None:
        path = self._container_dir(container)
        if not path.is_dir():
            raise StorageError(container, None, "no such container")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageError(container, None, str(e)) from e


class S3ObjectStore(ObjectStore):
    """S3 object store.

    S3 bucket names cannot contain underscores, so containers are mapped to
    key prefixes (``{container}/``) inside one configured bucket.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ):
        """Initialize S3 object store.

        Args:
            bucket_name: Bucket holding every job container
            region: AWS region
            access_key_id: AWS access key (defaults to env/instance profile)
            secret_access_key: AWS secret key
            endpoint_url: Custom endpoint for S3-compatible storage (e.g., MinIO, R2)
            client: Pre-built boto3 client (mainly for tests)
        """
        self.bucket_name = bucket_name

        if client is None:
            # R2 and other S3-compatible services use 'auto' region
            client_kwargs = {
                "service_name": "s3",
                "region_name": region or ("auto" if endpoint_url else None),
            }
            if access_key_id and secret_access_key:
                client_kwargs["aws_access_key_id"] = access_key_id
                client_kwargs["aws_secret_access_key"] = secret_access_key
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)

        self._client = client

    @staticmethod
    def _key(container: str, name: str) -> str:
        return f"{container}/{name}"

    async def _in_executor(self, func, *args):
        """Run a blocking boto3 call without stalling the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def delete_file(self, container: str, name: str) -> None:
        await self._in_executor(self._delete_key, container, name)

    async def delete_container(self, container: str) -> None:
        await self._in_executor(self._delete_prefix, container)

    def _delete_key(self, container: str, name: str) -> None:
        key = self._key(container, name)
        try:
            self._client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(container, name, str(e)) from e

    def _delete_prefix(self, container: str) -> None:
        prefix = f"{container}/"
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if not keys:
                    continue
                response = self._client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": keys, "Quiet": True},
                )
                # Quiet mode still reports per-key failures
                errors = response.get("Errors") or []
                if errors:
                    first = errors[0]
                    raise StorageError(
                        container,
                        None,
                        f"{len(errors)} object(s) not deleted, e.g. "
                        f"{first.get('Key')}: {first.get('Code')} {first.get('Message', '')}".rstrip(),
                    )
                logger.debug(f"Removed {len(keys)} leftover objects under {prefix}")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(container, None, str(e)) from e


def create_object_store(config: "StorageConfig") -> ObjectStore:
    """Build the object store selected in the configuration."""
    if config.backend == StorageBackend.S3:
        if not config.bucket:
            raise ConfigError("storage.bucket is required for the s3 backend")
        return S3ObjectStore(
            bucket_name=config.bucket,
            region=config.region,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            endpoint_url=config.endpoint_url,
        )

    return LocalObjectStore(config.root or DEFAULT_STORAGE_DIR)

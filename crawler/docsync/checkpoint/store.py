"""
Persistence for serialized checkpoint state.

The driver writes the checkpoint after every event, one blob per traversal
kind ("content", "security"). Stores treat the blob as opaque text; parsing
is the codec's job.

Backends:
- InMemoryCheckpointStore: tests and local development
- FileCheckpointStore: one <name>.checkpoint.json file per traversal kind
- S3CheckpointStore: one object per traversal kind under a prefix

Invariants:
    - load() returns None when nothing was ever saved (fresh crawl)
    - save() is atomic: a reader sees the old or the new blob, never a mix
    - Traversal kinds never share a blob

How to change safely:
    - Keep blob names stable; renaming restarts a crawl from scratch
    - New backends must implement the CheckpointStore protocol
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from ..errors import CheckpointStoreError

logger = logging.getLogger(__name__)


@runtime_checkable
class CheckpointStore(Protocol):
    """Protocol for checkpoint persistence backends."""

    @abstractmethod
    async def load(self, name: str) -> str | None:
        """Load the blob saved for a traversal kind, or None."""
        ...

    @abstractmethod
    async def save(self, name: str, state: str) -> None:
        """Durably replace the blob for a traversal kind.

        Raises:
            CheckpointStoreError: If the write fails
        """
        ...


class InMemoryCheckpointStore:
    """Checkpoint store that keeps blobs in a dictionary.

    Also records every saved blob per name, which tests use to inspect the
    checkpoint written after each event.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._state: dict[str, str] = dict(initial or {})
        self.history: dict[str, list[str]] = {}

    async def load(self, name: str) -> str | None:
        return self._state.get(name)

    async def save(self, name: str, state: str) -> None:
        self._state[name] = state
        self.history.setdefault(name, []).append(state)


class FileCheckpointStore:
    """Checkpoint store backed by files in a directory.

    Writes go to a temporary file in the same directory followed by
    os.replace(), which is atomic on POSIX and Windows. File I/O runs in the
    default executor so an fsync never stalls the event loop the runners
    share.

    Example:
        >>> store = FileCheckpointStore("/var/lib/docsync")
        >>> await store.save("content", state)
        >>> await store.load("content") == state
        True
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.checkpoint.json"

    async def load(self, name: str) -> str | None:
        return await asyncio.get_running_loop().run_in_executor(None, self._read, name)

    async def save(self, name: str, state: str) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._write, name, state)
        logger.debug("Checkpoint saved", extra={"name": name, "path": str(self.path_for(name))})

    def _read(self, name: str) -> str | None:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise CheckpointStoreError(f"Failed to read checkpoint {path}: {e}", name=name) from e

    def _write(self, name: str, state: str) -> None:
        path = self.path_for(name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(state)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CheckpointStoreError(f"Failed to write checkpoint {path}: {e}", name=name) from e


class S3CheckpointStore:
    """Checkpoint store backed by S3 objects.

    Object key: <prefix>/<name>.checkpoint.json

    Attributes:
        s3_config: S3Config with bucket, region and credentials

    Example:
        >>> store = S3CheckpointStore(config.s3)
        >>> await store.connect()
        >>> await store.save("security", state)
        >>> await store.close()
    """

    def __init__(self, s3_config: Any) -> None:
        self.s3_config = s3_config
        self._session = None
        self._s3_ctx = None
        self._s3_client = None

    def key_for(self, name: str) -> str:
        prefix = self.s3_config.checkpoint_prefix.strip("/")
        return f"{prefix}/{name}.checkpoint.json" if prefix else f"{name}.checkpoint.json"

    async def connect(self) -> None:
        """Create the S3 client."""
        if self._s3_client is not None:
            return

        self._session = get_session()

        client_kwargs = {
            "region_name": self.s3_config.region,
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.info("S3 checkpoint store connected", extra={"bucket": self.s3_config.bucket})

    async def close(self) -> None:
        """Close the S3 client."""
        if self._s3_client is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None
            self._s3_ctx = None

    async def load(self, name: str) -> str | None:
        await self.connect()
        key = self.key_for(name)
        try:
            response = await self._s3_client.get_object(Bucket=self.s3_config.bucket, Key=key)
            content = await response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise CheckpointStoreError(
                f"Failed to read checkpoint s3://{self.s3_config.bucket}/{key}: {e}", name=name
            ) from e
        return content.decode("utf-8")

    async def save(self, name: str, state: str) -> None:
        await self.connect()
        key = self.key_for(name)
        try:
            await self._s3_client.put_object(
                Bucket=self.s3_config.bucket,
                Key=key,
                Body=state.encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            raise CheckpointStoreError(
                f"Failed to write checkpoint s3://{self.s3_config.bucket}/{key}: {e}", name=name
            ) from e

        logger.debug("Checkpoint saved", extra={"name": name, "key": key})


def create_checkpoint_store(config: Any) -> CheckpointStore:
    """Factory function to create a checkpoint store from configuration.

    Args:
        config: Connector configuration

    Returns:
        Appropriate CheckpointStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import CheckpointBackend

    backend = config.checkpoint.backend
    if backend == CheckpointBackend.MEMORY:
        return InMemoryCheckpointStore()
    elif backend == CheckpointBackend.FILE:
        return FileCheckpointStore(config.checkpoint.directory)
    elif backend == CheckpointBackend.S3:
        return S3CheckpointStore(config.s3)
    else:
        raise ValueError(f"Unsupported checkpoint backend: {backend}")

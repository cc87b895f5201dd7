"""
Sample Object Storage
======================

The orchestrator fetches each submitted sample from an object store before
routing it.  :class:`Storage` is the async interface it depends on;
:class:`LocalStorage` serves objects from a directory tree laid out as
``<root_dir>/<bucket>/<key>``.
"""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from shared.config import StorageConfig

DEFAULT_CHUNK_SIZE = 1 << 20


class StorageError(Exception):
    """An object could not be fetched from the store."""


@runtime_checkable
class Storage(Protocol):
    """Async object store."""

    async def download(self, bucket: str, key: str, dest: BinaryIO) -> None:
        """Copy object *key* of *bucket* into the open file *dest*."""
        ...


class LocalStorage:
    """Filesystem-backed object store.

    Usage::

        storage = LocalStorage("/srv/samples")
        with open(target, "wb") as fh:
            await storage.download("samples", sha256, fh)
    """

    def __init__(
        self, root_dir: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        self._root = Path(root_dir)
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: StorageConfig) -> LocalStorage:
        if config.deployment_kind != "local":
            raise StorageError(
                f"Unsupported storage deployment kind: {config.deployment_kind}"
            )
        return cls(config.root_dir)

    @property
    def root(self) -> Path:
        return self._root

    def object_path(self, bucket: str, key: str) -> Path:
        """Path of *key* in *bucket*; keys may not escape the bucket."""
        bucket_dir = (self._root / bucket).resolve()
        path = (bucket_dir / key).resolve()
        if bucket_dir not in path.parents:
            raise StorageError(f"Object key escapes bucket: {key!r}")
        return path

    async def upload(self, bucket: str, key: str, data: bytes) -> Path:
        path = self.object_path(bucket, key)
        await asyncio.to_thread(self._write, path, data)
        return path

    async def download(self, bucket: str, key: str, dest: BinaryIO) -> None:
        """Copy the object into *dest* on a worker thread.

        If the awaiting task is cancelled (e.g. by a timeout) the copy stops
        at the next chunk and has finished before the cancellation
        propagates, so *dest* is never written after this returns.
        """
        path = self.object_path(bucket, key)
        if not path.is_file():
            raise StorageError(f"Object not found: {bucket}/{key}")

        stop = threading.Event()
        copy = asyncio.ensure_future(
            asyncio.to_thread(self._copy, path, dest, stop, self._chunk_size)
        )
        try:
            await asyncio.shield(copy)
        except asyncio.CancelledError:
            stop.set()
            await copy
            raise

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    @staticmethod
    def _copy(
        path: Path, dest: BinaryIO, stop: threading.Event, chunk_size: int
    ) -> None:
        with open(path, "rb") as src:
            while not stop.is_set():
                chunk = src.read(chunk_size)
                if not chunk:
                    break
                dest.write(chunk)

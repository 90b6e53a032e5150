"""BlobStore protocol and the bundled in-memory and local-disk stores.

The engine treats blob storage as an opaque key-addressed byte store.
Keys are generated by the engine; stores never interpret them beyond
mapping them to a location.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

from .exceptions import BlobNotFoundError, BlobStoreError

logger = logging.getLogger(__name__)


def new_blob_key(name: str) -> str:
    """Return a fresh, unique key for content uploaded under *name*."""
    return f"{uuid.uuid4()}/{name}"


@runtime_checkable
class BlobStore(Protocol):
    """Async key/value byte store.

    ``get`` and ``delete`` raise ``BlobNotFoundError`` for unknown keys.
    Any other backend failure should surface as ``BlobStoreError``.
    """

    async def put(self, key: str, data: bytes) -> None: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...


class InMemoryBlobStore:
    """Dict-backed store for tests and ephemeral deployments."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def get(self, key: str) -> bytes:
        try:
            return self._blobs[key]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None

    async def delete(self, key: str) -> None:
        if self._blobs.pop(key, None) is None:
            raise BlobNotFoundError(f"Blob not found: {key}")

    def __contains__(self, key: object) -> bool:
        return key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class LocalDiskBlobStore:
    """Stores each blob as a file under *root*.

    Blocking file I/O runs in a worker thread.  Keys may contain ``/``
    (the engine uses ``{uuid}/{name}``); ``_resolve_key`` keeps every
    resolved path inside *root*.
    """

    def __init__(self, root: Path | str, *, create: bool = True) -> None:
        self.root = Path(root).resolve()
        if not self.root.exists():
            if not create:
                raise FileNotFoundError(f"Blob root does not exist: {self.root}")
            self.root.mkdir(parents=True, exist_ok=True)
        if not self.root.is_dir():
            raise NotADirectoryError(f"Blob root is not a directory: {self.root}")

    def _resolve_key(self, key: str) -> Path:
        rel = key.lstrip("/")
        if not rel or "\0" in rel:
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        resolved = (self.root / rel).resolve()
        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise BlobStoreError(f"Blob key resolves outside store root: {key!r}") from None
        return resolved

    async def put(self, key: str, data: bytes) -> None:
        path = self._resolve_key(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {key}: {e}") from e

    async def get(self, key: str) -> bytes:
        path = self._resolve_key(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {key}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._resolve_key(key)

        def _unlink() -> None:
            path.unlink()
            parent = path.parent
            # Drop the per-key directory once it is empty.
            if parent != self.root and not any(parent.iterdir()):
                parent.rmdir()

        try:
            await asyncio.to_thread(_unlink)
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {key}") from None
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {key}: {e}") from e
        logger.debug("Deleted blob %s", key)

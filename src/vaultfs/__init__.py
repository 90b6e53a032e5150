"""vaultfs: a permissioned virtual filesystem over blob storage.

POSIX-style modes, trash with timed purge, per-folder versioning, and
advisory file locks.
"""

__version__ = "0.1.0"

from vaultfs._vault_async import VaultAsync
from vaultfs.config import VaultConfig
from vaultfs.events import EventBus, EventType, NodeEvent
from vaultfs.fs.blobs import BlobStore, InMemoryBlobStore, LocalDiskBlobStore
from vaultfs.fs.exceptions import (
    AccessDeniedError,
    BlobNotFoundError,
    BlobStoreError,
    DuplicateNameError,
    FileLockedError,
    IllegalArgumentError,
    IllegalStateError,
    InvalidPermissionFormatError,
    NodeNotFoundError,
    NotFoundError,
    ParentNotDirectoryError,
    PrincipalNotFoundError,
    VaultError,
)
from vaultfs.fs.lifecycle import LifecycleEngine
from vaultfs.fs.permissions import Capability
from vaultfs.fs.reaper import Reaper
from vaultfs.fs.types import Actor, NodeInfo, SweepResult, VersionInfo

__all__ = [
    "AccessDeniedError",
    "Actor",
    "BlobNotFoundError",
    "BlobStore",
    "BlobStoreError",
    "Capability",
    "DuplicateNameError",
    "EventBus",
    "EventType",
    "FileLockedError",
    "IllegalArgumentError",
    "IllegalStateError",
    "InMemoryBlobStore",
    "InvalidPermissionFormatError",
    "LifecycleEngine",
    "LocalDiskBlobStore",
    "NodeEvent",
    "NodeInfo",
    "NodeNotFoundError",
    "NotFoundError",
    "ParentNotDirectoryError",
    "PrincipalNotFoundError",
    "Reaper",
    "SweepResult",
    "VaultAsync",
    "VaultConfig",
    "VaultError",
    "VersionInfo",
    "__version__",
]

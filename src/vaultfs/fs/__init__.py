"""Engine layer: permissions, node store, versioning, locks, lifecycle, Reaper."""

from vaultfs.fs.blobs import BlobStore, InMemoryBlobStore, LocalDiskBlobStore, new_blob_key
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
from vaultfs.fs.locks import LockManager
from vaultfs.fs.permissions import Capability, format_mode, is_allowed, parse_mode, split_mode
from vaultfs.fs.principals import PrincipalService
from vaultfs.fs.reaper import Reaper
from vaultfs.fs.store import NodeStore
from vaultfs.fs.types import Actor, NodeInfo, SweepResult, VersionInfo
from vaultfs.fs.versioning import VersioningService

__all__ = [
    "AccessDeniedError",
    "Actor",
    "BlobNotFoundError",
    "BlobStore",
    "BlobStoreError",
    "Capability",
    "DuplicateNameError",
    "FileLockedError",
    "IllegalArgumentError",
    "IllegalStateError",
    "InMemoryBlobStore",
    "InvalidPermissionFormatError",
    "LifecycleEngine",
    "LocalDiskBlobStore",
    "LockManager",
    "NodeInfo",
    "NodeNotFoundError",
    "NodeStore",
    "NotFoundError",
    "ParentNotDirectoryError",
    "PrincipalNotFoundError",
    "PrincipalService",
    "Reaper",
    "SweepResult",
    "VaultError",
    "VersionInfo",
    "VersioningService",
    "format_mode",
    "is_allowed",
    "new_blob_key",
    "parse_mode",
    "split_mode",
]

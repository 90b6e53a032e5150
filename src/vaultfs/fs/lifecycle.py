"""LifecycleEngine: create, read, rename, move, delete, restore, and admin ops.

Every operation follows the same shape: load the node, check the actor's
capability, check the advisory lock for write-class operations, check
name collisions, mutate, flush.  The actor is always an explicit
parameter; nothing is read from ambient state.  Commit and rollback
belong to the caller that owns the session.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vaultfs.models.nodes import DEFAULT_DIRECTORY_MODE, DEFAULT_FILE_MODE
from vaultfs.models.principals import ADMIN_GROUP_NAME

from .blobs import new_blob_key
from .exceptions import (
    AccessDeniedError,
    BlobStoreError,
    DuplicateNameError,
    IllegalArgumentError,
    IllegalStateError,
    NodeNotFoundError,
    ParentNotDirectoryError,
)
from .locks import LockManager
from .permissions import Capability, can_read, is_allowed, parse_mode
from .principals import PrincipalService
from .store import NodeStore
from .types import utc_now
from .versioning import VersioningService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.models.nodes import FileNodeBase, HistorySnapshotBase

    from .blobs import BlobStore
    from .types import Actor, Clock

logger = logging.getLogger(__name__)

_RESERVED_NAMES = {".", ".."}


def validate_name(name: str) -> str:
    """Reject names that cannot be a single path segment."""
    if not name or not name.strip():
        raise IllegalArgumentError("Name must not be empty.")
    if "/" in name or "\\" in name or "\0" in name:
        raise IllegalArgumentError(f"Name contains invalid characters: {name!r}")
    if name in _RESERVED_NAMES:
        raise IllegalArgumentError(f"Reserved name: {name!r}")
    return name


class LifecycleEngine:
    """Access-controlled node lifecycle over a ``NodeStore`` and a ``BlobStore``.

    Holds configuration and composed services only, so one instance is
    safe to share across concurrent requests.  Each call receives its own
    session and must run inside a transaction the caller commits.
    """

    def __init__(
        self,
        blobs: BlobStore,
        *,
        node_model: type[FileNodeBase] | None = None,
        snapshot_model: type[HistorySnapshotBase] | None = None,
        admin_group: str = ADMIN_GROUP_NAME,
        clock: Clock = utc_now,
    ) -> None:
        from vaultfs.models.nodes import FileNode, HistorySnapshot

        nm: type[FileNodeBase] = node_model or FileNode
        sm: type[HistorySnapshotBase] = snapshot_model or HistorySnapshot

        self.blobs = blobs
        self._clock = clock

        # Composed services
        self.store = NodeStore(nm)
        self.versioning = VersioningService(self.store, sm, clock)
        self.locks = LockManager(self.store, clock)
        self.principals = PrincipalService(self.store, admin_group)

    @property
    def node_model(self) -> type[FileNodeBase]:
        return self.store.node_model

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _require_live(
        self, session: AsyncSession, node_id: int, label: str = "File"
    ) -> FileNodeBase:
        node = await self.store.get(session, node_id)
        if node is None:
            raise NodeNotFoundError(f"{label} not found with id: {node_id}")
        return node

    @staticmethod
    def _require(node: FileNodeBase, actor: Actor, capability: Capability, action: str) -> None:
        if not is_allowed(node, actor.id, actor.groups, capability):
            raise AccessDeniedError(f"You do not have permission to {action}.")

    async def _resolve_parent(
        self, session: AsyncSession, parent_id: int | None
    ) -> FileNodeBase | None:
        if parent_id is None:
            return None
        parent = await self._require_live(session, parent_id, "Parent folder")
        if not parent.is_directory:
            raise ParentNotDirectoryError(f"Parent with id {parent_id} is not a directory.")
        return parent

    async def _ensure_name_free(
        self,
        session: AsyncSession,
        parent_id: int | None,
        name: str,
        node_id: int | None = None,
    ) -> None:
        existing = await self.store.find_live_child(session, parent_id, name)
        if existing is not None and existing.id != node_id:
            raise DuplicateNameError(
                f"A file or directory with the name '{name}' already exists in this location."
            )

    @staticmethod
    def _group_for(actor: Actor) -> int:
        if actor.primary_group is None:
            raise IllegalStateError("User does not belong to any group.")
        return actor.primary_group

    async def _discard_blob(self, key: str) -> None:
        try:
            await self.blobs.delete(key)
        except BlobStoreError:
            logger.warning("Failed to clean up blob %s", key, exc_info=True)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_directory(
        self,
        session: AsyncSession,
        actor: Actor,
        name: str,
        parent_id: int | None = None,
        permissions: str | int = DEFAULT_DIRECTORY_MODE,
    ) -> FileNodeBase:
        """Create a directory owned by *actor* under *parent_id* (``None`` = root).

        No capability on the parent is required.
        """
        validate_name(name)
        await self._resolve_parent(session, parent_id)
        await self._ensure_name_free(session, parent_id, name)
        group_id = self._group_for(actor)
        mode = parse_mode(permissions)

        now = self._clock()
        directory = self.node_model(
            name=name,
            is_directory=True,
            owner_id=actor.id,
            group_id=group_id,
            permissions=mode,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )
        self.store.add(session, directory)
        await self.store.flush(session)

        logger.info("Created directory %r (%s) for user %s", name, directory.id, actor.id)
        return directory

    async def upload_file(
        self,
        session: AsyncSession,
        actor: Actor,
        name: str,
        data: bytes,
        parent_id: int | None = None,
        permissions: str | int = DEFAULT_FILE_MODE,
    ) -> FileNodeBase:
        """Store *data* under a fresh blob key and create a file node for it."""
        validate_name(name)
        await self._resolve_parent(session, parent_id)
        await self._ensure_name_free(session, parent_id, name)
        group_id = self._group_for(actor)
        mode = parse_mode(permissions)

        key = new_blob_key(name)
        await self.blobs.put(key, data)

        now = self._clock()
        node = self.node_model(
            name=name,
            is_directory=False,
            owner_id=actor.id,
            group_id=group_id,
            permissions=mode,
            parent_id=parent_id,
            content_ref=key,
            created_at=now,
            updated_at=now,
        )
        self.store.add(session, node)
        try:
            await self.store.flush(session)
        except Exception:
            await self._discard_blob(key)
            raise

        logger.info("Uploaded file %r (%s) for user %s", name, node.id, actor.id)
        return node

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_node(self, session: AsyncSession, actor: Actor, node_id: int) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.READ, "access this file")
        return node

    async def list_children(
        self,
        session: AsyncSession,
        actor: Actor,
        parent_id: int | None = None,
    ) -> list[FileNodeBase]:
        """List live children the actor can read; unreadable ones are omitted."""
        if parent_id is not None:
            parent = await self._require_live(session, parent_id, "Parent folder")
            self._require(parent, actor, Capability.READ, "access this folder")
        children = await self.store.list_live_children(session, parent_id)
        return [child for child in children if can_read(child, actor)]

    async def read_content(self, session: AsyncSession, actor: Actor, node_id: int) -> bytes:
        node = await self.get_node(session, actor, node_id)
        if node.is_directory:
            raise IllegalArgumentError("Cannot download a directory.")
        if node.content_ref is None:
            raise IllegalStateError("File node is missing its content reference.")
        return await self.blobs.get(node.content_ref)

    async def search(
        self,
        session: AsyncSession,
        actor: Actor,
        name: str | None = None,
        tags: str | None = None,
    ) -> list[FileNodeBase]:
        """Search live nodes by name and tags, keeping only those the actor can read."""
        matches = await self.store.search(session, name=name, tags=tags)
        return [node for node in matches if can_read(node, actor)]

    async def breadcrumbs(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: int | None,
    ) -> list[FileNodeBase]:
        """Return the chain from the top-level ancestor down to *folder_id*."""
        if folder_id is None:
            return []
        current: FileNodeBase | None = await self.get_node(session, actor, folder_id)
        chain: list[FileNodeBase] = []
        seen: set[int | None] = set()
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.insert(0, current)
            if current.parent_id is None:
                break
            current = await self.store.get(session, current.parent_id, include_deleted=True)
        return chain

    # ------------------------------------------------------------------
    # Write-class operations
    # ------------------------------------------------------------------

    async def update_content(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        data: bytes,
    ) -> FileNodeBase:
        """Replace a file's content.

        The new bytes always go to a fresh key, so a blob that a snapshot
        points at is never written over.  In a versioned folder the old key
        is kept in history.  Otherwise the old blob is dropped unless an
        earlier snapshot still holds it.
        """
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "write to this file")
        self.locks.check_write(node, actor)
        if node.is_directory:
            raise IllegalArgumentError("Cannot upload content to a directory.")
        if node.content_ref is None:
            raise IllegalStateError("File node is missing its content reference.")
        assert node.id is not None

        old_key = node.content_ref
        key = new_blob_key(node.name)
        await self.blobs.put(key, data)
        try:
            snapshot = await self.versioning.on_content_update(session, node, key, actor.id)
        except Exception:
            await self._discard_blob(key)
            raise

        if snapshot is None and not await self.versioning.holds_ref(session, node.id, old_key):
            await self._discard_blob(old_key)

        logger.info("Updated content of node %s by user %s", node.id, actor.id)
        return node

    async def rename(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        new_name: str,
    ) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "rename this file")
        self.locks.check_write(node, actor)
        validate_name(new_name)
        await self._ensure_name_free(session, node.parent_id, new_name, node.id)

        old_name = node.name
        node.name = new_name
        node.updated_at = self._clock()
        session.add(node)
        await self.store.flush(session)

        logger.info("Renamed node %s %r -> %r", node.id, old_name, new_name)
        return node

    async def move(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        new_parent_id: int,
    ) -> FileNodeBase:
        """Reparent a node.  Versioning flags, locks, and descendants are untouched."""
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "move this file")
        self.locks.check_write(node, actor)

        destination = await self._require_live(session, new_parent_id, "Destination folder")
        if not destination.is_directory:
            raise ParentNotDirectoryError(
                f"Destination with id {new_parent_id} is not a directory."
            )
        self._require(
            destination, actor, Capability.WRITE, "move files into the destination folder"
        )
        if node.is_directory:
            await self._ensure_not_descendant(session, node, destination)
        await self._ensure_name_free(session, new_parent_id, node.name, node.id)

        old_parent = node.parent_id
        node.parent_id = new_parent_id
        node.updated_at = self._clock()
        session.add(node)
        await self.store.flush(session)

        logger.info("Moved node %s from %s to %s", node.id, old_parent, new_parent_id)
        return node

    async def _ensure_not_descendant(
        self,
        session: AsyncSession,
        node: FileNodeBase,
        destination: FileNodeBase,
    ) -> None:
        current: FileNodeBase | None = destination
        seen: set[int | None] = set()
        while current is not None and current.id not in seen:
            if current.id == node.id:
                raise IllegalArgumentError("Cannot move a directory into itself or its descendant.")
            seen.add(current.id)
            if current.parent_id is None:
                return
            current = await self.store.get(session, current.parent_id, include_deleted=True)

    async def soft_delete(self, session: AsyncSession, actor: Actor, node_id: int) -> FileNodeBase:
        """Move a node to the trash.

        Children of a deleted directory are left as they are: they stay live
        and keep listing under their (now deleted) parent.
        """
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "delete this file")
        self.locks.check_write(node, actor)

        node.deleted_at = self._clock()
        session.add(node)
        await self.store.flush(session)

        logger.info("Soft-deleted node %s by user %s", node.id, actor.id)
        return node

    async def list_trash(self, session: AsyncSession, actor: Actor) -> list[FileNodeBase]:
        deleted = await self.store.list_soft_deleted(session)
        return [node for node in deleted if can_read(node, actor)]

    async def restore(self, session: AsyncSession, actor: Actor, node_id: int) -> FileNodeBase:
        """Bring a soft-deleted node back to the live set."""
        node = await self.store.get_deleted(session, node_id)
        if node is None:
            raise NodeNotFoundError(f"Deleted file not found with id: {node_id}")
        self._require(node, actor, Capability.WRITE, "restore this file")
        await self._ensure_name_free(session, node.parent_id, node.name, node.id)

        node.deleted_at = None
        session.add(node)
        await self.store.flush(session)

        logger.info("Restored node %s by user %s", node.id, actor.id)
        return node

    async def update_tags(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        tags: str,
        description: str | None = None,
    ) -> FileNodeBase:
        """Replace the tags; *description* is replaced too when given."""
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "modify tags for this file")
        self.locks.check_write(node, actor)

        node.tags = tags
        if description is not None:
            node.description = description
        node.updated_at = self._clock()
        session.add(node)
        await self.store.flush(session)
        return node

    # ------------------------------------------------------------------
    # Ownership and mode
    # ------------------------------------------------------------------

    async def change_owner(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        owner_id: int,
        group_id: int,
        recursive: bool = False,
    ) -> FileNodeBase:
        """Reassign owner and group.  Admins only; recursion ignores descendants' modes."""
        if not actor.is_admin:
            raise AccessDeniedError("Only admins can change file ownership.")
        node = await self._require_live(session, node_id)
        await self.principals.get_user(session, owner_id)
        await self.principals.get_group(session, group_id)

        now = self._clock()
        node.owner_id = owner_id
        node.group_id = group_id
        node.updated_at = now
        session.add(node)

        changed = 1
        if recursive and node.is_directory:
            # Pre-order, iterative so depth is unbounded.
            stack = list(reversed(await self.store.list_live_children(session, node.id)))
            while stack:
                child = stack.pop()
                child.owner_id = owner_id
                child.group_id = group_id
                child.updated_at = now
                session.add(child)
                changed += 1
                if child.is_directory:
                    grandchildren = await self.store.list_live_children(session, child.id)
                    stack.extend(reversed(grandchildren))

        await self.store.flush(session)
        logger.info(
            "Changed owner of node %s to %s:%s (%d nodes)", node.id, owner_id, group_id, changed
        )
        return node

    async def change_permissions(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        permissions: str | int,
    ) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        if node.owner_id != actor.id:
            raise AccessDeniedError("Only the owner can change permissions.")
        node.permissions = parse_mode(permissions)
        node.updated_at = self._clock()
        session.add(node)
        await self.store.flush(session)
        return node

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------

    async def toggle_versioning(
        self,
        session: AsyncSession,
        actor: Actor,
        folder_id: int,
        enabled: bool,
    ) -> FileNodeBase:
        folder = await self._require_live(session, folder_id, "Folder")
        if not folder.is_directory:
            raise IllegalArgumentError("Versioning can only be enabled on directories.")
        self._require(folder, actor, Capability.WRITE, "modify this folder")

        folder.versioning_enabled = enabled
        folder.updated_at = self._clock()
        session.add(folder)
        await self.store.flush(session)

        logger.info("Versioning %s on folder %s", "enabled" if enabled else "disabled", folder.id)
        return folder

    async def get_history(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
    ) -> Sequence[HistorySnapshotBase]:
        node = await self.get_node(session, actor, node_id)
        if node.is_directory:
            raise IllegalArgumentError("Cannot get versions for a directory.")
        assert node.id is not None
        return await self.versioning.list_history(session, node.id)

    async def restore_version(
        self,
        session: AsyncSession,
        actor: Actor,
        node_id: int,
        snapshot_id: int,
    ) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "write to this file")
        self.locks.check_write(node, actor)
        if node.is_directory:
            raise IllegalArgumentError("Cannot restore versions of a directory.")

        await self.versioning.restore_version(session, node, snapshot_id, actor.id)
        return node

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def lock(self, session: AsyncSession, actor: Actor, node_id: int) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "change the lock status of this file")
        return await self.locks.lock(session, node, actor)

    async def unlock(self, session: AsyncSession, actor: Actor, node_id: int) -> FileNodeBase:
        node = await self._require_live(session, node_id)
        self._require(node, actor, Capability.WRITE, "change the lock status of this file")
        return await self.locks.unlock(session, node, actor)

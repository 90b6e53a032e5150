"""LockManager: advisory per-file exclusive locks.

A file moves between two states: unlocked, and locked by one holder.
The lock is advisory: storage does not enforce it, every write path in
the engine calls ``check_write`` before mutating.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import update

from .exceptions import AccessDeniedError, FileLockedError, IllegalArgumentError, IllegalStateError
from .types import utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.models.nodes import FileNodeBase

    from .store import NodeStore
    from .types import Actor, Clock

logger = logging.getLogger(__name__)


class LockManager:
    """Lock state transitions for file nodes.

    Acquisition is a compare-and-swap ``UPDATE ... WHERE is_locked = false``
    so two sessions racing for the same unlocked file cannot both win.
    """

    def __init__(self, store: NodeStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def check_write(node: FileNodeBase, actor: Actor) -> None:
        """Raise ``FileLockedError`` if *node* is locked by someone other than *actor*."""
        if node.is_locked and node.lock_holder_id != actor.id:
            raise FileLockedError(
                f"'{node.name}' is locked by another user and cannot be modified."
            )

    async def lock(self, session: AsyncSession, node: FileNodeBase, actor: Actor) -> FileNodeBase:
        """Lock *node* for *actor*.

        Re-locking by the current holder is a no-op.  The parent directory
        must have versioning enabled at the moment of the attempt.
        """
        if node.is_directory:
            raise IllegalArgumentError("Cannot lock a directory.")

        parent = None
        if node.parent_id is not None:
            parent = await self._store.get(session, node.parent_id, include_deleted=True)
        if parent is None or parent.versioning_enabled is not True:
            raise IllegalStateError(
                "File lock can only be used for files in a version-controlled folder."
            )

        if node.is_locked:
            if node.lock_holder_id == actor.id:
                return node
            raise FileLockedError(f"'{node.name}' is already locked by another user.")

        model = self._store.node_model
        now = self._clock()
        result = await session.execute(
            update(model)
            .where(
                model.id == node.id,  # type: ignore[arg-type]
                model.is_locked.is_(False),  # type: ignore[attr-defined]
            )
            .values(is_locked=True, lock_holder_id=actor.id, locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(node)
        if result.rowcount == 0 and node.lock_holder_id != actor.id:
            raise FileLockedError(f"'{node.name}' is already locked by another user.")

        logger.info("Locked node %s for user %s", node.id, actor.id)
        return node

    async def unlock(self, session: AsyncSession, node: FileNodeBase, actor: Actor) -> FileNodeBase:
        """Release *actor*'s lock on *node*; unlocking an unlocked file is a no-op."""
        if node.is_directory:
            raise IllegalArgumentError("Cannot unlock a directory.")
        if not node.is_locked:
            return node
        if node.lock_holder_id != actor.id:
            raise AccessDeniedError("You cannot unlock a file locked by another user.")

        node.is_locked = False
        node.lock_holder_id = None
        node.locked_at = None
        node.updated_at = self._clock()
        session.add(node)
        await session.flush()

        logger.info("Unlocked node %s by user %s", node.id, actor.id)
        return node

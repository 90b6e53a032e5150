"""VersioningService: history snapshots of displaced content references."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlmodel import select

from .exceptions import NodeNotFoundError
from .types import utc_now

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.models.nodes import FileNodeBase, HistorySnapshotBase

    from .store import NodeStore
    from .types import Clock

logger = logging.getLogger(__name__)


class VersioningService:
    """Decides at content-update time whether to keep the prior content.

    The decision reads the parent directory's ``versioning_enabled`` flag
    as it is *now*, never a value captured earlier.  Snapshots already
    recorded are never rewritten or dropped when the flag is toggled off
    or the file moves elsewhere; only the Reaper removes them.
    """

    def __init__(
        self,
        store: NodeStore,
        snapshot_model: type[HistorySnapshotBase],
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._snapshot_model = snapshot_model
        self._clock = clock

    @property
    def snapshot_model(self) -> type[HistorySnapshotBase]:
        return self._snapshot_model

    async def is_versioned(self, session: AsyncSession, node: FileNodeBase) -> bool:
        """True when the node's parent directory currently has versioning on."""
        if node.parent_id is None:
            return False
        parent = await self._store.get(session, node.parent_id, include_deleted=True)
        return parent is not None and parent.versioning_enabled is True

    async def next_version(self, session: AsyncSession, node_id: int) -> int:
        sm = self._snapshot_model
        result = await session.execute(
            select(func.max(sm.version)).where(sm.node_id == node_id)
        )
        latest = result.scalar_one_or_none()
        return (latest or 0) + 1

    async def _archive(
        self,
        session: AsyncSession,
        node: FileNodeBase,
        modifier_id: int,
    ) -> HistorySnapshotBase:
        assert node.id is not None
        assert node.content_ref is not None
        snapshot = self._snapshot_model(
            node_id=node.id,
            version=await self.next_version(session, node.id),
            content_ref=node.content_ref,
            modifier_id=modifier_id,
            created_at=self._clock(),
        )
        session.add(snapshot)
        return snapshot

    async def on_content_update(
        self,
        session: AsyncSession,
        node: FileNodeBase,
        new_content_ref: str,
        modifier_id: int,
    ) -> HistorySnapshotBase | None:
        """Point *node* at *new_content_ref*, archiving the old reference if versioned.

        Returns the snapshot written, or ``None`` when versioning is off.
        """
        snapshot = None
        if await self.is_versioned(session, node):
            snapshot = await self._archive(session, node, modifier_id)
            logger.debug(
                "Archived %s of node %s as v%d", node.content_ref, node.id, snapshot.version
            )

        node.content_ref = new_content_ref
        node.updated_at = self._clock()
        session.add(node)
        await session.flush()
        return snapshot

    async def holds_ref(self, session: AsyncSession, node_id: int, content_ref: str) -> bool:
        """True when any snapshot of the node still points at *content_ref*."""
        sm = self._snapshot_model
        result = await session.execute(
            select(sm.id).where(sm.node_id == node_id, sm.content_ref == content_ref).limit(1)
        )
        return result.first() is not None

    async def get_snapshot(
        self,
        session: AsyncSession,
        node_id: int,
        snapshot_id: int,
    ) -> HistorySnapshotBase | None:
        sm = self._snapshot_model
        result = await session.execute(
            select(sm).where(sm.id == snapshot_id, sm.node_id == node_id)
        )
        return result.scalar_one_or_none()

    async def restore_version(
        self,
        session: AsyncSession,
        node: FileNodeBase,
        snapshot_id: int,
        modifier_id: int,
    ) -> HistorySnapshotBase:
        """Make a snapshot's content current again, archiving the current content first.

        Restoring always appends to history; nothing is discarded.
        Returns the snapshot that was restored.
        """
        assert node.id is not None
        target = await self.get_snapshot(session, node.id, snapshot_id)
        if target is None:
            raise NodeNotFoundError(
                f"File version not found with id: {snapshot_id} for node {node.id}"
            )

        await self._archive(session, node, modifier_id)
        node.content_ref = target.content_ref
        node.updated_at = self._clock()
        session.add(node)
        await session.flush()

        logger.info("Restored node %s to v%d", node.id, target.version)
        return target

    async def list_history(
        self,
        session: AsyncSession,
        node_id: int,
    ) -> Sequence[HistorySnapshotBase]:
        """List all snapshots for a node, newest version first."""
        sm = self._snapshot_model
        result = await session.execute(
            select(sm)
            .where(sm.node_id == node_id)
            .order_by(sm.version.desc())  # type: ignore[attr-defined]
        )
        return result.scalars().all()

    async def delete_history(self, session: AsyncSession, node_id: int) -> list[str]:
        """Delete every snapshot of a node and return the content keys they held."""
        sm = self._snapshot_model
        refs = [s.content_ref for s in await self.list_history(session, node_id)]
        await session.execute(sa_delete(sm).where(sm.node_id == node_id))  # type: ignore[arg-type]
        return refs

"""Reaper: permanent purge of nodes past the trash retention period."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from vaultfs.events import EventType, NodeEvent

from .exceptions import BlobNotFoundError
from .types import SweepResult, as_utc, utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.events import EventBus

    from .blobs import BlobStore
    from .store import NodeStore
    from .types import Clock
    from .versioning import VersioningService

    SessionFactory = Callable[[], AsyncSession]

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class Reaper:
    """Hard-deletes soft-deleted nodes whose ``deleted_at`` is older than the retention.

    Each candidate is purged in its own session so one failure never
    rolls back another node's purge.  A candidate is re-read before it is
    touched; anything restored in the meantime is skipped.  The blob goes
    first: if it cannot be removed the node stays in the trash and the
    next cycle tries again.
    """

    def __init__(
        self,
        store: NodeStore,
        versioning: VersioningService,
        blobs: BlobStore,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._versioning = versioning
        self._blobs = blobs
        self.retention = retention
        self._clock = clock
        self._event_bus = event_bus
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def sweep(self, session_factory: SessionFactory) -> SweepResult:
        """Run one purge cycle.

        Returns immediately with ``already_running=True`` if another sweep
        holds the reaper.
        """
        if self._lock.locked():
            logger.info("Sweep already in progress; skipping")
            return SweepResult(already_running=True)

        async with self._lock:
            cutoff = self._clock() - self.retention
            async with session_factory() as session:
                candidates = await self._store.list_soft_deleted_before(session, cutoff)
                candidate_ids = [n.id for n in candidates if n.id is not None]

            result = SweepResult(cutoff=cutoff, candidates=len(candidate_ids))
            logger.info("Sweep found %d nodes deleted before %s", len(candidate_ids), cutoff)

            for node_id in candidate_ids:
                try:
                    outcome = await self._purge_one(session_factory, node_id, cutoff)
                except Exception:
                    logger.error("Failed to purge node %s", node_id, exc_info=True)
                    result.deferred.append(node_id)
                    continue
                if outcome == "purged":
                    result.purged.append(node_id)
                elif outcome == "deferred":
                    result.deferred.append(node_id)
                else:
                    result.skipped.append(node_id)

            logger.info(
                "Sweep done: %d purged, %d deferred, %d skipped",
                len(result.purged),
                len(result.deferred),
                len(result.skipped),
            )
            return result

    async def _purge_one(
        self,
        session_factory: SessionFactory,
        node_id: int,
        cutoff: datetime,
    ) -> str:
        async with session_factory() as session:
            node = await self._store.get(session, node_id, include_deleted=True)
            deleted_at = as_utc(node.deleted_at) if node is not None else None
            if node is None or deleted_at is None or deleted_at >= cutoff:
                logger.info("Node %s no longer eligible for purge; skipping", node_id)
                return "skipped"

            current_ref = node.content_ref
            if not node.is_directory and current_ref:
                try:
                    await self._blobs.delete(current_ref)
                except BlobNotFoundError:
                    logger.warning("Blob %s of node %s already gone", current_ref, node_id)
                except Exception:
                    logger.error(
                        "Failed to delete blob %s of node %s; will retry next cycle",
                        current_ref,
                        node_id,
                        exc_info=True,
                    )
                    return "deferred"

            history_refs = await self._versioning.delete_history(session, node_id)
            await self._store.delete(session, node)
            await session.commit()

        logger.info("Purged node %s (%s)", node_id, node.name)
        await self._delete_history_blobs(node_id, history_refs, current_ref)
        if self._event_bus is not None:
            await self._event_bus.emit(NodeEvent(EventType.NODE_PURGED, node_id))
        return "purged"

    async def _delete_history_blobs(
        self,
        node_id: int,
        refs: list[str],
        current_ref: str | None,
    ) -> None:
        # Snapshots may share keys with each other and with the current content.
        for ref in dict.fromkeys(refs):
            if not ref or ref == current_ref:
                continue
            try:
                await self._blobs.delete(ref)
            except BlobNotFoundError:
                logger.debug("History blob %s of node %s already gone", ref, node_id)
            except Exception:
                logger.warning(
                    "Failed to delete history blob %s of node %s", ref, node_id, exc_info=True
                )

    async def run_periodically(
        self,
        session_factory: SessionFactory,
        interval_seconds: float,
    ) -> None:
        """Sweep every *interval_seconds* until cancelled."""
        logger.info("Reaper started; interval %ss", interval_seconds)
        try:
            while True:
                try:
                    await self.sweep(session_factory)
                except Exception:
                    logger.error("Sweep failed", exc_info=True)
                await asyncio.sleep(interval_seconds)
        finally:
            logger.info("Reaper stopped")

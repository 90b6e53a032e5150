"""VaultAsync: async facade wiring the engine, principals, Reaper, and event bus."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vaultfs.config import VaultConfig
from vaultfs.events import EventBus, EventType, NodeEvent
from vaultfs.fs.blobs import InMemoryBlobStore, LocalDiskBlobStore
from vaultfs.fs.lifecycle import LifecycleEngine
from vaultfs.fs.reaper import Reaper
from vaultfs.fs.types import Actor, NodeInfo, SweepResult, VersionInfo, utc_now
from vaultfs.models.nodes import (
    DEFAULT_DIRECTORY_MODE,
    DEFAULT_FILE_MODE,
    FileNode,
    HistorySnapshot,
)
from vaultfs.models.principals import Group, User, UserGroupLink

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine

    from vaultfs.fs.blobs import BlobStore
    from vaultfs.fs.types import Clock
    from vaultfs.models.nodes import FileNodeBase, HistorySnapshotBase

logger = logging.getLogger(__name__)

DEFAULT_URL = "sqlite+aiosqlite://"

ActorRef = int | Actor


class VaultAsync:
    """Async facade over the vault engine.

    Each call runs in its own session: committed when the operation
    returns, rolled back when it raises.  Events go out only after the
    commit succeeds.

    Usage::

        async with VaultAsync() as vault:
            admin = await vault.admin_id()
            folder = await vault.create_directory(admin, "docs")
            await vault.upload_file(admin, "a.txt", b"hello", parent_id=folder.id)

    Operations take the acting user either as a user id (resolved to an
    ``Actor`` from current group memberships) or as a prebuilt ``Actor``.
    Handlers passed as *event_handlers* are subscribed to every event type.
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        *,
        url: str = DEFAULT_URL,
        config: VaultConfig | None = None,
        blobs: BlobStore | None = None,
        node_model: type[FileNodeBase] | None = None,
        snapshot_model: type[HistorySnapshotBase] | None = None,
        clock: Clock = utc_now,
        event_handlers: Iterable[Callable[..., Any]] = (),
    ) -> None:
        self.config = config or VaultConfig()
        self._owns_engine = engine is None
        self._engine_db = engine or create_async_engine(url, echo=False)
        self._session_factory = async_sessionmaker(
            self._engine_db, class_=AsyncSession, expire_on_commit=False
        )

        if blobs is None:
            if self.config.blob_root is not None:
                blobs = LocalDiskBlobStore(self.config.blob_root)
            else:
                blobs = InMemoryBlobStore()
        self.blobs = blobs

        self._node_model = node_model or FileNode
        self._snapshot_model = snapshot_model or HistorySnapshot

        self.events = EventBus()
        for handler in event_handlers:
            self.events.register_all(handler)
        self.engine = LifecycleEngine(
            blobs,
            node_model=self._node_model,
            snapshot_model=self._snapshot_model,
            admin_group=self.config.admin_group,
            clock=clock,
        )
        self.reaper = Reaper(
            self.engine.store,
            self.engine.versioning,
            blobs,
            retention=self.config.retention,
            clock=clock,
            event_bus=self.events,
        )
        self._reaper_task: asyncio.Task[None] | None = None
        self._opened = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create tables and the admin principals if they are missing."""
        if self._opened:
            return
        tables = [
            self._node_model.__table__,  # type: ignore[attr-defined]
            self._snapshot_model.__table__,  # type: ignore[attr-defined]
            User.__table__,  # type: ignore[attr-defined]
            Group.__table__,  # type: ignore[attr-defined]
            UserGroupLink.__table__,  # type: ignore[attr-defined]
        ]
        async with self._engine_db.begin() as conn:
            for table in tables:
                await conn.run_sync(lambda c, t=table: t.create(c, checkfirst=True))

        async with self._session() as session:
            await self.engine.principals.ensure_admin(session)
        self._opened = True
        logger.info("Vault opened on %s", self._engine_db.url)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.stop_reaper()
        if self._owns_engine:
            await self._engine_db.dispose()

    async def __aenter__(self) -> VaultAsync:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Session management (per-operation only)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _actor(self, session: AsyncSession, actor: ActorRef) -> Actor:
        if isinstance(actor, Actor):
            return actor
        return await self.engine.principals.resolve_actor(session, actor)

    async def _emit(
        self,
        event_type: EventType,
        node_id: int,
        actor_id: int | None,
        *,
        old_parent_id: int | None = None,
        detail: str | None = None,
    ) -> None:
        await self.events.emit(
            NodeEvent(
                event_type=event_type,
                node_id=node_id,
                actor_id=actor_id,
                old_parent_id=old_parent_id,
                detail=detail,
            )
        )

    # ------------------------------------------------------------------
    # Create and read
    # ------------------------------------------------------------------

    async def create_directory(
        self,
        actor: ActorRef,
        name: str,
        parent_id: int | None = None,
        permissions: str | int = DEFAULT_DIRECTORY_MODE,
    ) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            node = await self.engine.create_directory(session, who, name, parent_id, permissions)
            info = NodeInfo.from_node(node)
        await self._emit(EventType.NODE_CREATED, info.id, who.id)
        return info

    async def upload_file(
        self,
        actor: ActorRef,
        name: str,
        data: bytes,
        parent_id: int | None = None,
        permissions: str | int = DEFAULT_FILE_MODE,
    ) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            node = await self.engine.upload_file(
                session, who, name, data, parent_id, permissions
            )
            info = NodeInfo.from_node(node)
        await self._emit(EventType.NODE_CREATED, info.id, who.id)
        return info

    async def get_node(self, actor: ActorRef, node_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            return NodeInfo.from_node(await self.engine.get_node(session, who, node_id))

    async def list_children(self, actor: ActorRef, parent_id: int | None = None) -> list[NodeInfo]:
        async with self._session() as session:
            who = await self._actor(session, actor)
            children = await self.engine.list_children(session, who, parent_id)
            return [NodeInfo.from_node(n) for n in children]

    async def read_content(self, actor: ActorRef, node_id: int) -> bytes:
        async with self._session() as session:
            who = await self._actor(session, actor)
            return await self.engine.read_content(session, who, node_id)

    async def search(
        self,
        actor: ActorRef,
        name: str | None = None,
        tags: str | None = None,
    ) -> list[NodeInfo]:
        async with self._session() as session:
            who = await self._actor(session, actor)
            matches = await self.engine.search(session, who, name=name, tags=tags)
            return [NodeInfo.from_node(n) for n in matches]

    async def breadcrumbs(self, actor: ActorRef, folder_id: int | None) -> list[NodeInfo]:
        async with self._session() as session:
            who = await self._actor(session, actor)
            chain = await self.engine.breadcrumbs(session, who, folder_id)
            return [NodeInfo.from_node(n) for n in chain]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_content(self, actor: ActorRef, node_id: int, data: bytes) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.update_content(session, who, node_id, data)
            )
        await self._emit(EventType.CONTENT_UPDATED, node_id, who.id)
        return info

    async def rename(self, actor: ActorRef, node_id: int, new_name: str) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            node = await self.engine.store.get(session, node_id)
            old_name = node.name if node is not None else None
            info = NodeInfo.from_node(await self.engine.rename(session, who, node_id, new_name))
        await self._emit(EventType.NODE_RENAMED, node_id, who.id, detail=old_name)
        return info

    async def move(self, actor: ActorRef, node_id: int, new_parent_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            node = await self.engine.store.get(session, node_id)
            old_parent_id = node.parent_id if node is not None else None
            info = NodeInfo.from_node(
                await self.engine.move(session, who, node_id, new_parent_id)
            )
        await self._emit(EventType.NODE_MOVED, node_id, who.id, old_parent_id=old_parent_id)
        return info

    async def soft_delete(self, actor: ActorRef, node_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(await self.engine.soft_delete(session, who, node_id))
        await self._emit(EventType.NODE_DELETED, node_id, who.id)
        return info

    async def list_trash(self, actor: ActorRef) -> list[NodeInfo]:
        async with self._session() as session:
            who = await self._actor(session, actor)
            return [NodeInfo.from_node(n) for n in await self.engine.list_trash(session, who)]

    async def restore(self, actor: ActorRef, node_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(await self.engine.restore(session, who, node_id))
        await self._emit(EventType.NODE_RESTORED, node_id, who.id)
        return info

    async def update_tags(
        self, actor: ActorRef, node_id: int, tags: str, description: str | None = None
    ) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.update_tags(session, who, node_id, tags, description)
            )
        await self._emit(EventType.TAGS_UPDATED, node_id, who.id, detail=tags)
        return info

    async def change_owner(
        self,
        actor: ActorRef,
        node_id: int,
        owner_id: int,
        group_id: int,
        recursive: bool = False,
    ) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.change_owner(
                    session, who, node_id, owner_id, group_id, recursive=recursive
                )
            )
        await self._emit(
            EventType.OWNER_CHANGED, node_id, who.id, detail=f"{owner_id}:{group_id}"
        )
        return info

    async def change_permissions(
        self, actor: ActorRef, node_id: int, permissions: str | int
    ) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.change_permissions(session, who, node_id, permissions)
            )
        await self._emit(EventType.MODE_CHANGED, node_id, who.id, detail=info.permissions)
        return info

    # ------------------------------------------------------------------
    # Versioning and locks
    # ------------------------------------------------------------------

    async def toggle_versioning(self, actor: ActorRef, folder_id: int, enabled: bool) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.toggle_versioning(session, who, folder_id, enabled)
            )
        await self._emit(
            EventType.VERSIONING_CHANGED, folder_id, who.id, detail="on" if enabled else "off"
        )
        return info

    async def get_history(self, actor: ActorRef, node_id: int) -> list[VersionInfo]:
        async with self._session() as session:
            who = await self._actor(session, actor)
            history = await self.engine.get_history(session, who, node_id)
            return [VersionInfo.from_snapshot(s) for s in history]

    async def restore_version(self, actor: ActorRef, node_id: int, snapshot_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(
                await self.engine.restore_version(session, who, node_id, snapshot_id)
            )
        await self._emit(EventType.VERSION_RESTORED, node_id, who.id, detail=str(snapshot_id))
        return info

    async def lock(self, actor: ActorRef, node_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(await self.engine.lock(session, who, node_id))
        await self._emit(EventType.LOCK_CHANGED, node_id, who.id, detail="locked")
        return info

    async def unlock(self, actor: ActorRef, node_id: int) -> NodeInfo:
        async with self._session() as session:
            who = await self._actor(session, actor)
            info = NodeInfo.from_node(await self.engine.unlock(session, who, node_id))
        await self._emit(EventType.LOCK_CHANGED, node_id, who.id, detail="unlocked")
        return info

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    async def admin_id(self) -> int:
        async with self._session() as session:
            admin, _ = await self.engine.principals.ensure_admin(session)
            assert admin.id is not None
            return admin.id

    async def resolve_actor(self, user_id: int) -> Actor:
        async with self._session() as session:
            return await self.engine.principals.resolve_actor(session, user_id)

    async def create_group(self, name: str) -> int:
        async with self._session() as session:
            group = await self.engine.principals.create_group(session, name)
            assert group.id is not None
            return group.id

    async def rename_group(self, group_id: int, name: str) -> None:
        async with self._session() as session:
            await self.engine.principals.rename_group(session, group_id, name)

    async def delete_group(self, group_id: int) -> int:
        async with self._session() as session:
            return await self.engine.principals.delete_group(session, group_id)

    async def create_user(self, username: str, group_ids: Sequence[int] = ()) -> int:
        async with self._session() as session:
            user = await self.engine.principals.create_user(session, username, group_ids)
            assert user.id is not None
            return user.id

    async def set_user_groups(self, user_id: int, group_ids: Sequence[int]) -> None:
        async with self._session() as session:
            await self.engine.principals.set_user_groups(session, user_id, group_ids)

    async def delete_user(self, user_id: int) -> int:
        async with self._session() as session:
            return await self.engine.principals.delete_user(session, user_id)

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    async def sweep(self) -> SweepResult:
        """Run one Reaper cycle now."""
        return await self.reaper.sweep(self._session_factory)

    def start_reaper(self, interval_seconds: float | None = None) -> asyncio.Task[None]:
        """Start the periodic Reaper as a background task (idempotent)."""
        if self._reaper_task is not None and not self._reaper_task.done():
            return self._reaper_task
        interval = interval_seconds or self.config.sweep_interval_seconds
        self._reaper_task = asyncio.create_task(
            self.reaper.run_periodically(self._session_factory, interval),
            name="vaultfs-reaper",
        )
        return self._reaper_task

    async def stop_reaper(self) -> None:
        task, self._reaper_task = self._reaper_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

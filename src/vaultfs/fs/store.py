"""NodeStore: node lookup, child listing, and trash queries.

Stateless service that receives the node model at construction and a
session at call time.  Every "live" query excludes nodes with a
``deleted_at`` timestamp.  The store does not serialize writers; the
engine checks name collisions before writing and the partial unique
index catches what slips through a concurrent race.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .exceptions import DuplicateNameError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.models.nodes import FileNodeBase


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _is_sibling_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    if "uq_vaultfs_nodes_live_sibling" in message:
        return True
    return "parent_id" in message and "name" in message


class NodeStore:
    """CRUD and queries over file nodes.

    Constructor receives the concrete node model so callers can use
    custom SQLModel subclasses with different table names.
    """

    def __init__(self, node_model: type[FileNodeBase]) -> None:
        self._node_model = node_model

    @property
    def node_model(self) -> type[FileNodeBase]:
        return self._node_model

    def _parent_clause(self, parent_id: int | None):
        model = self._node_model
        if parent_id is None:
            return model.parent_id.is_(None)  # type: ignore[union-attr]
        return model.parent_id == parent_id

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(
        self,
        session: AsyncSession,
        node_id: int,
        include_deleted: bool = False,
    ) -> FileNodeBase | None:
        """Get a node by id; live nodes only unless *include_deleted*."""
        model = self._node_model
        query = select(model).where(model.id == node_id)
        if not include_deleted:
            query = query.where(model.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_deleted(self, session: AsyncSession, node_id: int) -> FileNodeBase | None:
        """Get a node by id only if it is soft-deleted."""
        model = self._node_model
        result = await session.execute(
            select(model).where(
                model.id == node_id,
                model.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def find_live_child(
        self,
        session: AsyncSession,
        parent_id: int | None,
        name: str,
    ) -> FileNodeBase | None:
        """Get the live child of *parent_id* (``None`` = root) called *name*."""
        model = self._node_model
        result = await session.execute(
            select(model).where(
                self._parent_clause(parent_id),
                model.name == name,
                model.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_live_children(
        self,
        session: AsyncSession,
        parent_id: int | None,
    ) -> Sequence[FileNodeBase]:
        """List live children of *parent_id*, directories first, then by name."""
        model = self._node_model
        result = await session.execute(
            select(model)
            .where(
                self._parent_clause(parent_id),
                model.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(model.is_directory.desc(), model.name)  # type: ignore[union-attr]
        )
        return result.scalars().all()

    async def list_soft_deleted(self, session: AsyncSession) -> Sequence[FileNodeBase]:
        """List every soft-deleted node, most recently deleted first."""
        model = self._node_model
        result = await session.execute(
            select(model)
            .where(model.deleted_at.is_not(None))  # type: ignore[union-attr]
            .order_by(model.deleted_at.desc())  # type: ignore[union-attr]
        )
        return result.scalars().all()

    async def list_soft_deleted_before(
        self,
        session: AsyncSession,
        cutoff: datetime,
    ) -> Sequence[FileNodeBase]:
        """List nodes soft-deleted strictly before *cutoff*, oldest first."""
        model = self._node_model
        result = await session.execute(
            select(model)
            .where(
                model.deleted_at.is_not(None),  # type: ignore[union-attr]
                model.deleted_at < cutoff,  # type: ignore[operator]
            )
            .order_by(model.deleted_at)  # type: ignore[arg-type]
        )
        return result.scalars().all()

    async def list_by_owner(self, session: AsyncSession, owner_id: int) -> Sequence[FileNodeBase]:
        """List every node owned by *owner_id*, deleted ones included."""
        model = self._node_model
        result = await session.execute(select(model).where(model.owner_id == owner_id))
        return result.scalars().all()

    async def list_by_group(self, session: AsyncSession, group_id: int) -> Sequence[FileNodeBase]:
        """List every node assigned to *group_id*, deleted ones included."""
        model = self._node_model
        result = await session.execute(select(model).where(model.group_id == group_id))
        return result.scalars().all()

    async def search(
        self,
        session: AsyncSession,
        name: str | None = None,
        tags: str | None = None,
    ) -> Sequence[FileNodeBase]:
        """Case-insensitive substring search over live names and tags.

        Blank filters are ignored; with both blank every live node matches.
        """
        model = self._node_model
        conditions = [model.deleted_at.is_(None)]  # type: ignore[union-attr]
        if name and name.strip():
            conditions.append(
                func.lower(model.name).like(_like_pattern(name.strip()), escape="\\")
            )
        if tags and tags.strip():
            conditions.append(
                func.lower(model.tags).like(_like_pattern(tags.strip()), escape="\\")
            )
        result = await session.execute(select(model).where(*conditions).order_by(model.id))
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def add(self, session: AsyncSession, node: FileNodeBase) -> None:
        session.add(node)

    async def delete(self, session: AsyncSession, node: FileNodeBase) -> None:
        await session.delete(node)

    async def flush(self, session: AsyncSession) -> None:
        """Flush pending changes, mapping live-sibling index hits to ``DuplicateNameError``."""
        try:
            await session.flush()
        except IntegrityError as e:
            if _is_sibling_violation(e):
                raise DuplicateNameError(
                    "A file or directory with that name already exists in this location."
                ) from e
            raise

"""FileNode and HistorySnapshot models.

Provides ``FileNodeBase`` and ``HistorySnapshotBase`` non-table base classes.
Subclass with ``table=True`` and a custom ``__tablename__`` to use a
different table name per deployment.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Text, func, text
from sqlmodel import Field, SQLModel

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_FILE_MODE: int = 644
DEFAULT_DIRECTORY_MODE: int = 755

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class FileNodeBase(SQLModel):
    """Base fields for a file or directory node. Subclass with ``table=True``."""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    is_directory: bool = Field(default=False)
    owner_id: int = Field(index=True)
    group_id: int = Field(index=True)
    permissions: int = Field(default=DEFAULT_FILE_MODE)
    """Decimal-digit mode: 750 means owner=7, group=5, other=0."""
    parent_id: int | None = Field(default=None, index=True)
    content_ref: str | None = Field(default=None)
    """Blob key of the current content. Always ``None`` for directories."""
    tags: str | None = Field(default=None, sa_type=Text)
    description: str | None = Field(default=None, sa_type=Text)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    versioning_enabled: bool | None = Field(default=None)
    """Tri-state, directories only: ``None``/``False`` is off, ``True`` is on."""
    is_locked: bool = Field(default=False)
    lock_holder_id: int | None = Field(default=None)
    locked_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


class FileNode(FileNodeBase, table=True):
    """Default node table: ``vaultfs_nodes``."""

    __tablename__ = "vaultfs_nodes"


# Live sibling names are unique.  Root nodes have a NULL ``parent_id``, which a
# plain unique index treats as distinct, so the index keys on coalesce(parent_id, 0).
Index(
    "uq_vaultfs_nodes_live_sibling",
    func.coalesce(FileNode.parent_id, 0),
    FileNode.name,
    unique=True,
    sqlite_where=text("deleted_at IS NULL"),
    postgresql_where=text("deleted_at IS NULL"),
)


class HistorySnapshotBase(SQLModel):
    """Base fields for a retained prior content reference."""

    id: int | None = Field(default=None, primary_key=True)
    node_id: int = Field(index=True)
    version: int = Field(default=1)
    content_ref: str = Field(default="")
    """The content key that was displaced when this snapshot was taken."""
    modifier_id: int
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class HistorySnapshot(HistorySnapshotBase, table=True):
    """Default history table: ``vaultfs_history``."""

    __tablename__ = "vaultfs_history"
    __table_args__ = (
        Index("uq_vaultfs_history_node_version", "node_id", "version", unique=True),
    )

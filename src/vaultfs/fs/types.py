"""Value types: Actor, NodeInfo, VersionInfo, SweepResult."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultfs.models.nodes import FileNodeBase, HistorySnapshotBase

    Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True, slots=True)
class Actor:
    """The identity on whose behalf an operation runs.

    Attributes:
        id: User id.
        primary_group: Group assigned to nodes the actor creates, or None.
        groups: Every group the actor belongs to (primary included).
        is_admin: True when the actor belongs to the administrative group.
    """

    id: int
    primary_group: int | None = None
    groups: frozenset[int] = field(default_factory=frozenset)
    is_admin: bool = False


@dataclass
class NodeInfo:
    """Node metadata detached from the session."""

    id: int
    name: str
    is_directory: bool
    owner_id: int
    group_id: int
    permissions: str
    parent_id: int | None = None
    tags: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    versioning_enabled: bool | None = None
    is_locked: bool = False
    lock_holder_id: int | None = None
    locked_at: datetime | None = None

    @classmethod
    def from_node(cls, node: FileNodeBase) -> NodeInfo:
        assert node.id is not None
        return cls(
            id=node.id,
            name=node.name,
            is_directory=node.is_directory,
            owner_id=node.owner_id,
            group_id=node.group_id,
            permissions=f"{node.permissions:03d}",
            parent_id=node.parent_id,
            tags=node.tags,
            description=node.description,
            created_at=as_utc(node.created_at),
            updated_at=as_utc(node.updated_at),
            deleted_at=as_utc(node.deleted_at),
            versioning_enabled=node.versioning_enabled,
            is_locked=node.is_locked,
            lock_holder_id=node.lock_holder_id,
            locked_at=as_utc(node.locked_at),
        )


@dataclass
class VersionInfo:
    """History entry."""

    id: int
    node_id: int
    version: int
    content_ref: str
    modifier_id: int
    created_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: HistorySnapshotBase) -> VersionInfo:
        assert snapshot.id is not None
        return cls(
            id=snapshot.id,
            node_id=snapshot.node_id,
            version=snapshot.version,
            content_ref=snapshot.content_ref,
            modifier_id=snapshot.modifier_id,
            created_at=as_utc(snapshot.created_at),
        )


@dataclass
class SweepResult:
    """Outcome of one Reaper cycle."""

    cutoff: datetime | None = None
    candidates: int = 0
    purged: list[int] = field(default_factory=list)
    deferred: list[int] = field(default_factory=list)
    """Nodes left in place because their blob could not be deleted."""
    skipped: list[int] = field(default_factory=list)
    """Nodes restored (or re-deleted later) between fetch and purge."""
    already_running: bool = False

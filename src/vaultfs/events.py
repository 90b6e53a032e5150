"""EventBus and event types for node lifecycle notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of node mutation the engine reports."""

    NODE_CREATED = "node_created"
    CONTENT_UPDATED = "content_updated"
    NODE_RENAMED = "node_renamed"
    NODE_MOVED = "node_moved"
    NODE_DELETED = "node_deleted"
    NODE_RESTORED = "node_restored"
    NODE_PURGED = "node_purged"
    OWNER_CHANGED = "owner_changed"
    MODE_CHANGED = "mode_changed"
    TAGS_UPDATED = "tags_updated"
    VERSIONING_CHANGED = "versioning_changed"
    VERSION_RESTORED = "version_restored"
    LOCK_CHANGED = "lock_changed"


@dataclass(frozen=True, slots=True)
class NodeEvent:
    """Immutable record of a node mutation.

    Attributes:
        event_type: The kind of mutation that occurred.
        node_id: Id of the affected node.
        actor_id: User who performed it; ``None`` for the Reaper.
        old_parent_id: Previous parent (moves only).
        detail: Short free-form detail, e.g. the old name on rename.
    """

    event_type: EventType
    node_id: int
    actor_id: int | None = None
    old_parent_id: int | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class _Subscription:
    handler: Callable[..., Any]
    node_id: int | None = None

    def wants(self, event: NodeEvent) -> bool:
        return self.node_id is None or self.node_id == event.node_id


class EventBus:
    """Dispatches node events to subscribed handlers.

    A subscription is a handler plus an optional node id; one bound to a
    node only sees that node's events.  Handlers run one after another in
    subscription order.  A handler that raises is logged and skipped: the
    mutation it reports has already committed.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[EventType, list[_Subscription]] = {et: [] for et in EventType}

    def register(
        self,
        event_type: EventType,
        handler: Callable[..., Any],
        *,
        node_id: int | None = None,
    ) -> None:
        self._subscriptions[event_type].append(_Subscription(handler, node_id))

    def register_all(self, handler: Callable[..., Any], *, node_id: int | None = None) -> None:
        """Subscribe *handler* to every event type."""
        for event_type in EventType:
            self.register(event_type, handler, node_id=node_id)

    def watch(
        self,
        node_id: int,
        handler: Callable[..., Any],
        *event_types: EventType,
    ) -> None:
        """Subscribe *handler* to events about one node (all types when none given)."""
        for event_type in event_types or tuple(EventType):
            self.register(event_type, handler, node_id=node_id)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Drop the first subscription of *handler* for *event_type*."""
        subscriptions = self._subscriptions[event_type]
        for i, sub in enumerate(subscriptions):
            if sub.handler == handler:
                del subscriptions[i]
                return True
        return False

    async def emit(self, event: NodeEvent) -> int:
        """Deliver *event*; returns how many handlers took it without raising."""
        delivered = 0
        for sub in list(self._subscriptions[event.event_type]):
            if not sub.wants(event):
                continue
            try:
                await sub.handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on node %s",
                    sub.handler,
                    event.event_type.value,
                    event.node_id,
                    exc_info=True,
                )
            else:
                delivered += 1
        return delivered

    @property
    def handler_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        for subscriptions in self._subscriptions.values():
            subscriptions.clear()

"""Capability enum, mode parsing, and the permission evaluator.

Modes are stored as plain integers whose three *decimal* digits are the
owner, group, and other fields: the stored value 750 means owner=7,
group=5, other=0.  The value is never reinterpreted as an octal number.
"""

from __future__ import annotations

import logging
import re
from enum import IntEnum
from typing import TYPE_CHECKING

from .exceptions import InvalidPermissionFormatError

if TYPE_CHECKING:
    from collections.abc import Collection

    from vaultfs.models.nodes import FileNodeBase

    from .types import Actor

logger = logging.getLogger(__name__)

_MODE_RE = re.compile(r"[0-7]{3}")


class Capability(IntEnum):
    """A single permission bit within an owner/group/other field."""

    READ = 4
    WRITE = 2
    EXECUTE = 1


def parse_mode(value: str | int) -> int:
    """Validate a mode such as ``"755"`` and return it as the stored integer.

    Integers are accepted when their three-digit decimal rendering is valid
    (``640`` is fine, ``648`` and ``1000`` are not).
    """
    if isinstance(value, bool):
        raise InvalidPermissionFormatError(f"Invalid permission format: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidPermissionFormatError(
                f"Invalid permission format: {value}. Each digit must be 0-7 (e.g. '755')."
            )
        text = f"{value:03d}"
    elif isinstance(value, str):
        text = value
    else:
        raise InvalidPermissionFormatError(f"Invalid permission format: {value!r}")

    if not _MODE_RE.fullmatch(text):
        raise InvalidPermissionFormatError(
            f"Invalid permission format: {text!r}. Each digit must be 0-7 (e.g. '755')."
        )
    return int(text)


def split_mode(permissions: int) -> tuple[int, int, int]:
    """Return the ``(owner, group, other)`` fields of a stored mode."""
    return permissions // 100 % 10, permissions // 10 % 10, permissions % 10


def format_mode(permissions: int) -> str:
    """Render a stored mode in ``rwxr-x---`` form."""
    out = []
    for part in split_mode(permissions):
        out.append("r" if part & Capability.READ else "-")
        out.append("w" if part & Capability.WRITE else "-")
        out.append("x" if part & Capability.EXECUTE else "-")
    return "".join(out)


def _grants(field: int, capability: Capability) -> bool:
    return (field & capability) == capability


def is_allowed(
    node: FileNodeBase,
    actor_id: int,
    actor_groups: Collection[int],
    capability: Capability,
) -> bool:
    """Decide whether *actor_id* holds *capability* on *node*.

    Exactly one field is consulted: the owner field if the actor owns the
    node, else the group field if the actor is in the node's group, else
    the other field.  A more permissive field further down never applies.
    """
    owner, group, other = split_mode(node.permissions)

    if actor_id == node.owner_id:
        allowed = _grants(owner, capability)
        logger.debug(
            "Owner check on node %s (%03d): actor=%s field=%s required=%s allowed=%s",
            node.id, node.permissions, actor_id, owner, capability.name, allowed,
        )
        return allowed

    if node.group_id in actor_groups:
        allowed = _grants(group, capability)
        logger.debug(
            "Group check on node %s (%03d): actor=%s field=%s required=%s allowed=%s",
            node.id, node.permissions, actor_id, group, capability.name, allowed,
        )
        return allowed

    allowed = _grants(other, capability)
    logger.debug(
        "Other check on node %s (%03d): actor=%s field=%s required=%s allowed=%s",
        node.id, node.permissions, actor_id, other, capability.name, allowed,
    )
    return allowed


def can_read(node: FileNodeBase, actor: Actor) -> bool:
    return is_allowed(node, actor.id, actor.groups, Capability.READ)


def can_write(node: FileNodeBase, actor: Actor) -> bool:
    return is_allowed(node, actor.id, actor.groups, Capability.WRITE)


def can_execute(node: FileNodeBase, actor: Actor) -> bool:
    return is_allowed(node, actor.id, actor.groups, Capability.EXECUTE)

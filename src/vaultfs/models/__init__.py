"""SQLModel database models for vaultfs."""

from vaultfs.models.nodes import (
    DEFAULT_DIRECTORY_MODE,
    DEFAULT_FILE_MODE,
    FileNode,
    FileNodeBase,
    HistorySnapshot,
    HistorySnapshotBase,
)
from vaultfs.models.principals import (
    ADMIN_GROUP_NAME,
    ADMIN_USERNAME,
    Group,
    User,
    UserGroupLink,
)

__all__ = [
    "ADMIN_GROUP_NAME",
    "ADMIN_USERNAME",
    "DEFAULT_DIRECTORY_MODE",
    "DEFAULT_FILE_MODE",
    "FileNode",
    "FileNodeBase",
    "Group",
    "HistorySnapshot",
    "HistorySnapshotBase",
    "User",
    "UserGroupLink",
]

"""User, Group, and membership models.

Memberships are a plain link table; nothing holds an in-memory
collection of the other side.  Resolve groups by query.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

ADMIN_USERNAME = "admin"
ADMIN_GROUP_NAME = "admins"


class User(SQLModel, table=True):
    """A principal that can own nodes: ``vaultfs_users``."""

    __tablename__ = "vaultfs_users"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Group(SQLModel, table=True):
    """A named set of users: ``vaultfs_groups``."""

    __tablename__ = "vaultfs_groups"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class UserGroupLink(SQLModel, table=True):
    """Membership row: ``vaultfs_user_groups``."""

    __tablename__ = "vaultfs_user_groups"

    user_id: int = Field(primary_key=True)
    group_id: int = Field(primary_key=True, index=True)

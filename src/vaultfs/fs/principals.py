"""PrincipalService: users, groups, memberships, and actor resolution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from vaultfs.models.principals import ADMIN_GROUP_NAME, ADMIN_USERNAME, Group, User, UserGroupLink

from .exceptions import DuplicateNameError, IllegalArgumentError, PrincipalNotFoundError
from .types import Actor

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from .store import NodeStore

logger = logging.getLogger(__name__)


class PrincipalService:
    """Manages users and groups and turns a user id into an ``Actor``.

    The administrative group (``"admins"`` by default) and the ``admin``
    user are protected: they cannot be renamed or deleted, and nodes of
    deleted principals are handed over to them.
    """

    def __init__(
        self,
        store: NodeStore,
        admin_group: str = ADMIN_GROUP_NAME,
        admin_username: str = ADMIN_USERNAME,
    ) -> None:
        self._store = store
        self.admin_group = admin_group
        self.admin_username = admin_username

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_user(self, session: AsyncSession, user_id: int) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise PrincipalNotFoundError(f"User not found with id: {user_id}")
        return user

    async def get_group(self, session: AsyncSession, group_id: int) -> Group:
        group = await session.get(Group, group_id)
        if group is None:
            raise PrincipalNotFoundError(f"Group not found with id: {group_id}")
        return group

    async def find_user(self, session: AsyncSession, username: str) -> User | None:
        result = await session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def find_group(self, session: AsyncSession, name: str) -> Group | None:
        result = await session.execute(select(Group).where(Group.name == name))
        return result.scalar_one_or_none()

    async def group_ids_for(self, session: AsyncSession, user_id: int) -> list[int]:
        """Group ids of *user_id* in ascending order; the first is the primary group."""
        result = await session.execute(
            select(UserGroupLink.group_id)
            .where(UserGroupLink.user_id == user_id)
            .order_by(UserGroupLink.group_id)
        )
        return list(result.scalars().all())

    async def resolve_actor(self, session: AsyncSession, user_id: int) -> Actor:
        """Build the ``Actor`` for *user_id* from its current memberships."""
        await self.get_user(session, user_id)
        group_ids = await self.group_ids_for(session, user_id)
        admins = await self.find_group(session, self.admin_group)
        return Actor(
            id=user_id,
            primary_group=group_ids[0] if group_ids else None,
            groups=frozenset(group_ids),
            is_admin=admins is not None and admins.id in group_ids,
        )

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(self, session: AsyncSession, name: str) -> Group:
        if await self.find_group(session, name) is not None:
            raise DuplicateNameError(f"Group already exists: {name}")
        group = Group(name=name)
        session.add(group)
        await session.flush()
        logger.info("Created group %s (%s)", group.name, group.id)
        return group

    async def rename_group(self, session: AsyncSession, group_id: int, name: str) -> Group:
        group = await self.get_group(session, group_id)
        if group.name == self.admin_group and name != self.admin_group:
            raise IllegalArgumentError(f"Cannot rename {self.admin_group} group")
        if name != group.name and await self.find_group(session, name) is not None:
            raise DuplicateNameError(f"Group already exists: {name}")
        group.name = name
        session.add(group)
        await session.flush()
        return group

    async def delete_group(self, session: AsyncSession, group_id: int) -> int:
        """Delete a group, reassigning its nodes to the administrative group.

        Returns the number of nodes reassigned.
        """
        group = await self.get_group(session, group_id)
        if group.name == self.admin_group:
            raise IllegalArgumentError(f"Cannot delete {self.admin_group} group")
        admins = await self.find_group(session, self.admin_group)
        if admins is None or admins.id is None:
            raise PrincipalNotFoundError(f"{self.admin_group} group not found")

        nodes = await self._store.list_by_group(session, group_id)
        for node in nodes:
            node.group_id = admins.id
            session.add(node)

        links = await session.execute(
            select(UserGroupLink).where(UserGroupLink.group_id == group_id)
        )
        for link in links.scalars().all():
            await session.delete(link)
        await session.delete(group)
        await session.flush()

        logger.info("Deleted group %s; reassigned %d nodes", group_id, len(nodes))
        return len(nodes)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(
        self,
        session: AsyncSession,
        username: str,
        group_ids: Iterable[int] | None = None,
    ) -> User:
        if await self.find_user(session, username) is not None:
            raise DuplicateNameError(f"User already exists: {username}")
        user = User(username=username)
        session.add(user)
        await session.flush()
        assert user.id is not None
        for group_id in group_ids or ():
            await self.add_user_to_group(session, user.id, group_id)
        logger.info("Created user %s (%s)", user.username, user.id)
        return user

    async def add_user_to_group(self, session: AsyncSession, user_id: int, group_id: int) -> None:
        await self.get_user(session, user_id)
        await self.get_group(session, group_id)
        if await session.get(UserGroupLink, (user_id, group_id)) is None:
            session.add(UserGroupLink(user_id=user_id, group_id=group_id))
            await session.flush()

    async def remove_user_from_group(
        self, session: AsyncSession, user_id: int, group_id: int
    ) -> None:
        await self.get_user(session, user_id)
        await self.get_group(session, group_id)
        link = await session.get(UserGroupLink, (user_id, group_id))
        if link is not None:
            await session.delete(link)
            await session.flush()

    async def set_user_groups(
        self, session: AsyncSession, user_id: int, group_ids: Sequence[int]
    ) -> None:
        """Replace a user's memberships.  The admin user must stay in admins only."""
        user = await self.get_user(session, user_id)
        if user.username == self.admin_username:
            admins = await self.find_group(session, self.admin_group)
            if admins is None or list(group_ids) != [admins.id]:
                raise IllegalArgumentError(
                    f"Admin user must belong to and only to '{self.admin_group}' group"
                )
        for current in await self.group_ids_for(session, user_id):
            if current not in group_ids:
                await self.remove_user_from_group(session, user_id, current)
        for group_id in group_ids:
            await self.add_user_to_group(session, user_id, group_id)

    async def delete_user(self, session: AsyncSession, user_id: int) -> int:
        """Delete a user, handing every node they own to the admin user.

        Returns the number of nodes reassigned.
        """
        user = await self.get_user(session, user_id)
        if user.username == self.admin_username:
            raise IllegalArgumentError("Cannot delete admin user")
        admin = await self.find_user(session, self.admin_username)
        if admin is None or admin.id is None:
            raise PrincipalNotFoundError("Admin user not found")

        nodes = await self._store.list_by_owner(session, user_id)
        for node in nodes:
            node.owner_id = admin.id
            session.add(node)

        for group_id in await self.group_ids_for(session, user_id):
            link = await session.get(UserGroupLink, (user_id, group_id))
            if link is not None:
                await session.delete(link)
        await session.delete(user)
        await session.flush()

        logger.info("Deleted user %s; reassigned %d nodes", user_id, len(nodes))
        return len(nodes)

    async def ensure_admin(self, session: AsyncSession) -> tuple[User, Group]:
        """Create the admin user and administrative group if they are missing."""
        admins = await self.find_group(session, self.admin_group)
        if admins is None:
            admins = await self.create_group(session, self.admin_group)
        admin = await self.find_user(session, self.admin_username)
        if admin is None:
            assert admins.id is not None
            admin = await self.create_user(session, self.admin_username, [admins.id])
        return admin, admins

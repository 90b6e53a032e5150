"""Tests for PrincipalService: users, groups, and actor resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from vaultfs.fs.exceptions import (
    DuplicateNameError,
    IllegalArgumentError,
    PrincipalNotFoundError,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultfs.fs.lifecycle import LifecycleEngine

    from .conftest import World


class TestResolveActor:
    async def test_regular_user(self, world: World) -> None:
        assert world.alice.primary_group == world.staff_id
        assert world.alice.groups == frozenset({world.staff_id})
        assert not world.alice.is_admin

    async def test_admin(self, world: World) -> None:
        assert world.admin.is_admin
        assert world.admin.primary_group == world.admins_id

    async def test_primary_is_lowest_group(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        p = vault.principals
        user = await p.create_user(session, "dave", [world.others_id, world.staff_id])
        actor = await p.resolve_actor(session, user.id)
        assert actor.primary_group == min(world.others_id, world.staff_id)
        assert actor.groups == frozenset({world.others_id, world.staff_id})

    async def test_user_without_groups(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        user = await vault.principals.create_user(session, "eve")
        actor = await vault.principals.resolve_actor(session, user.id)
        assert actor.primary_group is None
        assert actor.groups == frozenset()

    async def test_unknown_user(self, vault: LifecycleEngine, session: AsyncSession) -> None:
        with pytest.raises(PrincipalNotFoundError):
            await vault.principals.resolve_actor(session, 404)

    async def test_membership_changes_are_seen(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        p = vault.principals
        await p.add_user_to_group(session, world.carol.id, world.admins_id)
        assert (await p.resolve_actor(session, world.carol.id)).is_admin
        await p.remove_user_from_group(session, world.carol.id, world.admins_id)
        assert not (await p.resolve_actor(session, world.carol.id)).is_admin


class TestGroups:
    async def test_duplicate_name(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        with pytest.raises(DuplicateNameError):
            await vault.principals.create_group(session, "staff")

    async def test_rename(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        group = await vault.principals.rename_group(session, world.staff_id, "crew")
        assert group.name == "crew"

    async def test_admins_protected(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        with pytest.raises(IllegalArgumentError):
            await vault.principals.rename_group(session, world.admins_id, "root")
        with pytest.raises(IllegalArgumentError):
            await vault.principals.delete_group(session, world.admins_id)

    async def test_delete_reassigns_nodes(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        f = await vault.upload_file(session, world.carol, "c.txt", b"")
        g = await vault.upload_file(session, world.carol, "gone.txt", b"")
        await vault.soft_delete(session, world.carol, g.id)

        count = await vault.principals.delete_group(session, world.others_id)

        assert count == 2
        assert f.group_id == world.admins_id
        assert g.group_id == world.admins_id
        actor = await vault.principals.resolve_actor(session, world.carol.id)
        assert actor.groups == frozenset()

    async def test_missing_group(self, vault: LifecycleEngine, session: AsyncSession) -> None:
        with pytest.raises(PrincipalNotFoundError):
            await vault.principals.get_group(session, 999)


class TestUsers:
    async def test_duplicate_username(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        with pytest.raises(DuplicateNameError):
            await vault.principals.create_user(session, "alice")

    async def test_set_groups(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        p = vault.principals
        await p.set_user_groups(session, world.bob.id, [world.others_id])
        assert await p.group_ids_for(session, world.bob.id) == [world.others_id]

    async def test_admin_must_stay_admins_only(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        p = vault.principals
        with pytest.raises(IllegalArgumentError):
            await p.set_user_groups(session, world.admin.id, [world.admins_id, world.staff_id])
        with pytest.raises(IllegalArgumentError):
            await p.set_user_groups(session, world.admin.id, [])
        await p.set_user_groups(session, world.admin.id, [world.admins_id])

    async def test_delete_hands_nodes_to_admin(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        f = await vault.upload_file(session, world.bob, "b.txt", b"")
        count = await vault.principals.delete_user(session, world.bob.id)
        assert count == 1
        assert f.owner_id == world.admin.id
        assert f.group_id == world.staff_id
        with pytest.raises(PrincipalNotFoundError):
            await vault.principals.get_user(session, world.bob.id)

    async def test_admin_cannot_be_deleted(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        with pytest.raises(IllegalArgumentError):
            await vault.principals.delete_user(session, world.admin.id)

    async def test_ensure_admin_is_idempotent(
        self, vault: LifecycleEngine, session: AsyncSession, world: World
    ) -> None:
        admin, admins = await vault.principals.ensure_admin(session)
        assert admin.id == world.admin.id
        assert admins.id == world.admins_id

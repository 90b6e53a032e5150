"""Tests for the VaultAsync facade: transactions, events, and wiring."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from vaultfs import VaultAsync, VaultConfig
from vaultfs.events import EventType, NodeEvent
from vaultfs.fs.blobs import InMemoryBlobStore, LocalDiskBlobStore
from vaultfs.fs.exceptions import AccessDeniedError, DuplicateNameError, FileLockedError
from vaultfs.fs.types import NodeInfo

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from .conftest import FrozenClock


@pytest.fixture
async def vfs(clock: FrozenClock) -> AsyncIterator[VaultAsync]:
    async with VaultAsync(clock=clock) as v:
        yield v


@pytest.fixture
def events(vfs: VaultAsync) -> list[NodeEvent]:
    seen: list[NodeEvent] = []

    async def _record(event: NodeEvent) -> None:
        seen.append(event)

    vfs.events.register_all(_record)
    return seen


async def _team(vfs: VaultAsync) -> tuple[int, int, int]:
    staff = await vfs.create_group("staff")
    alice = await vfs.create_user("alice", [staff])
    bob = await vfs.create_user("bob", [staff])
    return staff, alice, bob


class TestOpen:
    async def test_admin_bootstrapped(self, vfs: VaultAsync) -> None:
        admin = await vfs.admin_id()
        actor = await vfs.resolve_actor(admin)
        assert actor.is_admin

    async def test_open_is_idempotent(self, vfs: VaultAsync) -> None:
        await vfs.open()
        assert await vfs.admin_id() == await vfs.admin_id()

    async def test_blob_root_config_uses_disk(self, tmp_path: Path) -> None:
        vault = VaultAsync(config=VaultConfig(blob_root=tmp_path))
        try:
            assert isinstance(vault.blobs, LocalDiskBlobStore)
        finally:
            await vault.close()

    async def test_default_blobs_in_memory(self, vfs: VaultAsync) -> None:
        assert isinstance(vfs.blobs, InMemoryBlobStore)


class TestOperations:
    async def test_round_trip(self, vfs: VaultAsync) -> None:
        _, alice, bob = await _team(vfs)
        folder = await vfs.create_directory(alice, "docs", permissions="770")
        f = await vfs.upload_file(alice, "a.txt", b"hello", parent_id=folder.id)
        assert isinstance(f, NodeInfo)
        assert f.permissions == "644"
        assert folder.permissions == "770"

        assert await vfs.read_content(bob, f.id) == b"hello"
        assert [n.name for n in await vfs.list_children(bob, folder.id)] == ["a.txt"]
        assert [n.id for n in await vfs.breadcrumbs(bob, folder.id)] == [folder.id]
        assert [n.id for n in await vfs.search(bob, name="A.TXT")] == [f.id]

    async def test_datetimes_are_aware(self, vfs: VaultAsync, clock: FrozenClock) -> None:
        _, alice, _ = await _team(vfs)
        await vfs.upload_file(alice, "a.txt", b"")
        [node] = await vfs.list_children(alice)
        assert node.created_at == clock.now
        assert node.created_at.tzinfo is not None

    async def test_versioning_and_locks(self, vfs: VaultAsync) -> None:
        _, alice, bob = await _team(vfs)
        folder = await vfs.create_directory(alice, "team", permissions="775")
        await vfs.toggle_versioning(alice, folder.id, True)
        f = await vfs.upload_file(alice, "plan.txt", b"v1", folder.id, "664")

        await vfs.update_content(bob, f.id, b"v2")
        [snap] = await vfs.get_history(alice, f.id)
        assert snap.version == 1
        assert snap.modifier_id == bob

        locked = await vfs.lock(alice, f.id)
        assert locked.is_locked
        with pytest.raises(FileLockedError):
            await vfs.update_content(bob, f.id, b"v3")
        await vfs.unlock(alice, f.id)

        await vfs.restore_version(bob, f.id, snap.id)
        assert await vfs.read_content(alice, f.id) == b"v1"

    async def test_admin_changes_owner(self, vfs: VaultAsync) -> None:
        staff, alice, bob = await _team(vfs)
        admin = await vfs.admin_id()
        f = await vfs.upload_file(alice, "a.txt", b"")
        with pytest.raises(AccessDeniedError):
            await vfs.change_owner(alice, f.id, bob, staff)
        node = await vfs.change_owner(admin, f.id, bob, staff)
        assert node.owner_id == bob
        node = await vfs.change_permissions(bob, f.id, "600")
        assert node.permissions == "600"

    async def test_membership_read_per_call(self, vfs: VaultAsync) -> None:
        staff, alice, bob = await _team(vfs)
        f = await vfs.upload_file(alice, "a.txt", b"x", permissions="640")
        assert await vfs.read_content(bob, f.id) == b"x"
        other = await vfs.create_group("other")
        await vfs.set_user_groups(bob, [other])
        with pytest.raises(AccessDeniedError):
            await vfs.read_content(bob, f.id)

    async def test_delete_user_hands_over_nodes(self, vfs: VaultAsync) -> None:
        _, alice, _ = await _team(vfs)
        admin = await vfs.admin_id()
        f = await vfs.upload_file(alice, "a.txt", b"")
        assert await vfs.delete_user(alice) == 1
        assert (await vfs.get_node(admin, f.id)).owner_id == admin


class TestTransactions:
    async def test_failed_operation_rolls_back(self, vfs: VaultAsync) -> None:
        _, alice, _ = await _team(vfs)
        await vfs.upload_file(alice, "a.txt", b"")
        with pytest.raises(DuplicateNameError):
            await vfs.upload_file(alice, "a.txt", b"")
        assert [n.name for n in await vfs.list_children(alice)] == ["a.txt"]

    async def test_rename_persists(self, vfs: VaultAsync) -> None:
        _, alice, _ = await _team(vfs)
        f = await vfs.upload_file(alice, "a.txt", b"")
        await vfs.rename(alice, f.id, "b.txt")
        assert (await vfs.get_node(alice, f.id)).name == "b.txt"


class TestEvents:
    async def test_emitted_after_commit(
        self, vfs: VaultAsync, events: list[NodeEvent]
    ) -> None:
        _, alice, _ = await _team(vfs)
        d1 = await vfs.create_directory(alice, "d1")
        d2 = await vfs.create_directory(alice, "d2")
        f = await vfs.upload_file(alice, "a.txt", b"", d1.id)
        await vfs.rename(alice, f.id, "b.txt")
        await vfs.move(alice, f.id, d2.id)
        await vfs.soft_delete(alice, f.id)
        await vfs.restore(alice, f.id)

        kinds = [e.event_type for e in events]
        assert kinds == [
            EventType.NODE_CREATED,
            EventType.NODE_CREATED,
            EventType.NODE_CREATED,
            EventType.NODE_RENAMED,
            EventType.NODE_MOVED,
            EventType.NODE_DELETED,
            EventType.NODE_RESTORED,
        ]
        renamed, moved = events[3], events[4]
        assert renamed.detail == "a.txt"
        assert moved.old_parent_id == d1.id
        assert all(e.actor_id == alice for e in events)

    async def test_tags_and_versioning_events(
        self, vfs: VaultAsync, events: list[NodeEvent]
    ) -> None:
        _, alice, _ = await _team(vfs)
        folder = await vfs.create_directory(alice, "team")
        f = await vfs.upload_file(alice, "a.txt", b"", folder.id)
        events.clear()

        info = await vfs.update_tags(alice, f.id, "draft", "first pass")
        await vfs.toggle_versioning(alice, folder.id, True)
        await vfs.toggle_versioning(alice, folder.id, False)

        assert info.description == "first pass"
        assert [(e.event_type, e.node_id, e.detail) for e in events] == [
            (EventType.TAGS_UPDATED, f.id, "draft"),
            (EventType.VERSIONING_CHANGED, folder.id, "on"),
            (EventType.VERSIONING_CHANGED, folder.id, "off"),
        ]
        assert all(e.actor_id == alice for e in events)

    async def test_constructor_handlers_subscribed(self, clock: FrozenClock) -> None:
        seen: list[NodeEvent] = []

        async def _record(event: NodeEvent) -> None:
            seen.append(event)

        async with VaultAsync(clock=clock, event_handlers=[_record]) as v:
            admin = await v.admin_id()
            d = await v.create_directory(admin, "d")
            await v.soft_delete(admin, d.id)
        assert [e.event_type for e in seen] == [EventType.NODE_CREATED, EventType.NODE_DELETED]

    async def test_watch_sees_only_that_node(self, vfs: VaultAsync) -> None:
        _, alice, _ = await _team(vfs)
        a = await vfs.upload_file(alice, "a.txt", b"")
        b = await vfs.upload_file(alice, "b.txt", b"")
        watched: list[NodeEvent] = []

        async def _record(event: NodeEvent) -> None:
            watched.append(event)

        vfs.events.watch(a.id, _record)
        await vfs.rename(alice, b.id, "c.txt")
        await vfs.rename(alice, a.id, "d.txt")
        assert [(e.event_type, e.node_id) for e in watched] == [(EventType.NODE_RENAMED, a.id)]

    async def test_no_event_on_failure(
        self, vfs: VaultAsync, events: list[NodeEvent]
    ) -> None:
        _, alice, bob = await _team(vfs)
        f = await vfs.upload_file(alice, "a.txt", b"", permissions="644")
        events.clear()
        with pytest.raises(AccessDeniedError):
            await vfs.soft_delete(bob, f.id)
        assert events == []


class TestReaper:
    async def test_sweep_purges(
        self, vfs: VaultAsync, clock: FrozenClock, events: list[NodeEvent]
    ) -> None:
        _, alice, _ = await _team(vfs)
        f = await vfs.upload_file(alice, "a.txt", b"x")
        await vfs.soft_delete(alice, f.id)
        clock.advance(days=8)

        result = await vfs.sweep()

        assert result.purged == [f.id]
        assert await vfs.list_trash(alice) == []
        assert len(vfs.blobs) == 0
        assert events[-1].event_type is EventType.NODE_PURGED

    async def test_start_and_stop(self, vfs: VaultAsync) -> None:
        task = vfs.start_reaper(interval_seconds=3600)
        assert vfs.start_reaper() is task
        await vfs.stop_reaper()
        assert task.cancelled()

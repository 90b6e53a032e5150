"""Shared fixtures for vaultfs tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import vaultfs.models  # noqa: F401  (registers tables on SQLModel.metadata)
from vaultfs.fs.blobs import InMemoryBlobStore
from vaultfs.fs.lifecycle import LifecycleEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from vaultfs.fs.types import Actor


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class World:
    """Principals shared by most tests.

    ``staff`` holds alice and bob; ``others`` holds carol; ``admin`` is in ``admins``.
    """

    admin: Actor
    alice: Actor
    bob: Actor
    carol: Actor
    admins_id: int
    staff_id: int
    others_id: int


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def file_session_factory(
    tmp_path: Path,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Sessions over a SQLite file, each on its own connection."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)
    await eng.dispose()


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest.fixture
def vault(blobs: InMemoryBlobStore, clock: FrozenClock) -> LifecycleEngine:
    """Lifecycle engine over the in-memory blob store and frozen clock."""
    return LifecycleEngine(blobs, clock=clock)


async def build_world(engine: LifecycleEngine, session: AsyncSession) -> World:
    principals = engine.principals
    admin, admins = await principals.ensure_admin(session)
    staff = await principals.create_group(session, "staff")
    others = await principals.create_group(session, "others")
    alice = await principals.create_user(session, "alice", [staff.id])
    bob = await principals.create_user(session, "bob", [staff.id])
    carol = await principals.create_user(session, "carol", [others.id])
    return World(
        admin=await principals.resolve_actor(session, admin.id),
        alice=await principals.resolve_actor(session, alice.id),
        bob=await principals.resolve_actor(session, bob.id),
        carol=await principals.resolve_actor(session, carol.id),
        admins_id=admins.id,
        staff_id=staff.id,
        others_id=others.id,
    )


@pytest.fixture
async def world(vault: LifecycleEngine, session: AsyncSession) -> World:
    return await build_world(vault, session)

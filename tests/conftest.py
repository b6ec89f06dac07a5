from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from query_tracker.config import Settings
from query_tracker.registry import QueryMocker
from query_tracker.tracker.core import Tracker

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50)),
)

catalogues = Table(
    "catalogues",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50)),
)

books = Table(
    "books",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(100)),
    Column("catalogue_id", Integer, ForeignKey("catalogues.id")),
)


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of tracker settings."""
    monkeypatch.delenv("QUERY_TRACKER_TRACK_TRANSACTIONS", raising=False)
    monkeypatch.delenv("QUERY_TRACKER_WARN_ON_REINSTALL", raising=False)
    monkeypatch.setenv("QUERY_TRACKER_LOG_LEVEL", "WARNING")


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine, connected once so dialect setup happens before mocking."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.connect() as conn:
        await conn.execute(text("SELECT 1"))
    yield eng
    await eng.dispose()


@pytest.fixture
def mocker() -> Iterator[QueryMocker]:
    m = QueryMocker(tracker=Tracker(Settings()))
    yield m
    m.unmock_all()


@pytest.fixture
def tracker(mocker: QueryMocker, engine: AsyncEngine) -> Iterator[Tracker]:
    """Tracker installed on a mocked engine."""
    mocker.mock(engine)
    t = mocker.get_tracker()
    t.install()
    yield t
    t.uninstall()

"""pytest fixtures for query_tracker, registered through the ``pytest11`` entry point."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from query_tracker.config import get_settings
from query_tracker.logging import setup_logging
from query_tracker.registry import QueryMocker
from query_tracker.tracker.core import Tracker


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("query-tracker")
    group.addoption(
        "--query-tracker-log-level",
        action="store",
        default=None,
        help="Emit query_tracker log events at this level (e.g. DEBUG).",
    )


def pytest_configure(config: pytest.Config) -> None:
    level = config.getoption("--query-tracker-log-level", default=None)
    if level:
        setup_logging(level)


@pytest.fixture
def sql_tracker() -> Iterator[Tracker]:
    """An installed Tracker, uninstalled after the test."""
    tracker = Tracker(get_settings())
    tracker.install()
    yield tracker
    tracker.uninstall()


@pytest.fixture
def query_mocker(sql_tracker: Tracker) -> Iterator[QueryMocker]:
    """A QueryMocker bound to ``sql_tracker`` that unmocks its engines after the test."""
    mocker = QueryMocker(tracker=sql_tracker)
    yield mocker
    mocker.unmock_all()

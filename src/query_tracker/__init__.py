"""Intercept SQLAlchemy queries in tests and answer them with canned results.

    tracker = query_tracker.get_tracker()
    query_tracker.mock(engine)
    tracker.install()
    tracker.on("query", lambda query, step: query.response([{"id": 1}]))
"""

from __future__ import annotations

from query_tracker.config import Settings, get_settings
from query_tracker.errors import (
    AlreadyMockedError,
    QueryAlreadySettledError,
    QueryNotFoundError,
    QueryRejectedError,
    QueryTrackerError,
)
from query_tracker.logging import setup_logging
from query_tracker.models.domain import QueryCall, QueryRecord, QueryResponse
from query_tracker.registry import QueryMocker
from query_tracker.tracker.core import NOT_INTERCEPTED, Tracker

_default = QueryMocker()

mock = _default.mock
unmock = _default.unmock
is_mocked = _default.is_mocked
get_tracker = _default.get_tracker

__all__ = [
    "NOT_INTERCEPTED",
    "AlreadyMockedError",
    "QueryAlreadySettledError",
    "QueryCall",
    "QueryMocker",
    "QueryNotFoundError",
    "QueryRecord",
    "QueryRejectedError",
    "QueryResponse",
    "QueryTrackerError",
    "Settings",
    "Tracker",
    "get_settings",
    "get_tracker",
    "is_mocked",
    "mock",
    "setup_logging",
    "unmock",
]

from __future__ import annotations


class QueryTrackerError(Exception):
    """Base class for every error raised by query_tracker."""


class QueryNotFoundError(QueryTrackerError, LookupError):
    """No query recorded at the requested position."""


class QueryAlreadySettledError(QueryTrackerError):
    """A query was answered more than once."""


class AlreadyMockedError(QueryTrackerError):
    """The engine already carries an interception shim."""


class QueryRejectedError(QueryTrackerError):
    """Failure delivered to the caller when a test rejects a query with a non-exception value."""

    def __init__(self, sql: str, reason: object) -> None:
        self.sql = sql
        self.reason = reason
        super().__init__(f"{sql} - {reason}")

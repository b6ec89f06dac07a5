from __future__ import annotations

from collections.abc import Iterator

from query_tracker.errors import QueryNotFoundError
from query_tracker.models.domain import QueryRecord


class QueryHistory:
    """Append-only record of the queries captured during one install session.

    Positions are 1-based: ``step(1)`` is the first captured query.
    """

    def __init__(self) -> None:
        self._records: list[QueryRecord] = []

    def append(self, record: QueryRecord) -> None:
        self._records.append(record)

    def count(self) -> int:
        return len(self._records)

    def first(self) -> QueryRecord:
        return self.step(1)

    def last(self) -> QueryRecord:
        return self.step(len(self._records))

    def step(self, n: int) -> QueryRecord:
        if n < 1 or n > len(self._records):
            raise QueryNotFoundError(
                f"No query at step {n} ({len(self._records)} recorded)"
            )
        return self._records[n - 1]

    def all(self) -> list[QueryRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[QueryRecord]:
        return iter(list(self._records))

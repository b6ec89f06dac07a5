"""Adapts canned query responses to the DBAPI cursor contract SQLAlchemy reads results from."""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from query_tracker.models.domain import QueryResponse

DML_METHODS = frozenset({"insert", "update", "delete"})

_MISSING = object()


@dataclass
class CannedResult:
    description: tuple[tuple[Any, ...], ...] | None
    rows: Iterator[tuple[Any, ...]]
    rowcount: int
    lastrowid: int | None = None


def _is_row_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _as_items(data: Any) -> Iterable[Any]:
    if data is None:
        return []
    if isinstance(data, (Mapping, str, bytes, bytearray)) or not isinstance(data, Iterable):
        return [data]
    return data


def _column_names(
    sample: list[Any], columns: list[str] | None, result_columns: list[str]
) -> list[str]:
    if columns:
        return list(columns)

    keys: list[str] = []
    for row in sample:
        if isinstance(row, Mapping):
            for key in row:
                if key not in keys:
                    keys.append(key)
    if keys:
        # Match the statement's column order when the rows name every column
        if result_columns and set(result_columns) <= set(keys):
            return result_columns + [k for k in keys if k not in result_columns]
        return keys

    if result_columns:
        return list(result_columns)

    width = max((len(row) if _is_row_sequence(row) else 1 for row in sample), default=0)
    return [f"column_{i}" for i in range(1, width + 1)]


def _to_row(row: Any, names: list[str]) -> tuple[Any, ...]:
    if isinstance(row, Mapping):
        return tuple(row.get(name) for name in names)
    if _is_row_sequence(row):
        return tuple(row)
    return (row,)


def build_result(
    response: QueryResponse, *, method: str, result_columns: list[str]
) -> CannedResult:
    """Turn a QueryResponse into the rows and cursor metadata for one statement.

    An integer answering a DML statement is a row count, or the new row id for
    an insert; elsewhere it is a single scalar row.
    """
    data = response.data
    rowcount = response.rowcount
    lastrowid = response.lastrowid

    if isinstance(data, int) and not isinstance(data, bool) and method in DML_METHODS:
        if method == "insert":
            lastrowid = data if lastrowid is None else lastrowid
            if rowcount is None:
                rowcount = 1
        elif rowcount is None:
            rowcount = data
        # INSERT ... RETURNING: hand the id back as the returned row
        data = [(data,)] if method == "insert" and result_columns else None

    items = _as_items(data)
    if response.stream:
        iterator = iter(items)
        first = next(iterator, _MISSING)
        sample = [] if first is _MISSING else [first]
        source: Iterable[Any] = itertools.chain(sample, iterator)
    else:
        sample = list(items)
        source = sample

    names = _column_names(sample, response.columns, result_columns)
    description = (
        tuple((name, None, None, None, None, None, None) for name in names) if names else None
    )
    if rowcount is None:
        rowcount = -1 if response.stream else len(sample)

    return CannedResult(
        description=description,
        rows=(_to_row(row, names) for row in source),
        rowcount=rowcount,
        lastrowid=lastrowid,
    )


class TrackedCursor:
    """DBAPI cursor proxy that serves a CannedResult once one is loaded.

    Until then every attribute and call goes to the wrapped driver cursor.
    """

    __slots__ = ("_cursor", "_canned")

    def __init__(self, cursor: Any) -> None:
        object.__setattr__(self, "_cursor", cursor)
        object.__setattr__(self, "_canned", None)

    def load(self, canned: CannedResult) -> None:
        object.__setattr__(self, "_canned", canned)

    @property
    def intercepted(self) -> bool:
        return self._canned is not None

    @property
    def description(self) -> Any:
        if self._canned is None:
            return self._cursor.description
        return self._canned.description

    @property
    def rowcount(self) -> int:
        if self._canned is None:
            return self._cursor.rowcount
        return self._canned.rowcount

    @property
    def lastrowid(self) -> Any:
        if self._canned is None:
            return self._cursor.lastrowid
        return self._canned.lastrowid

    def fetchone(self) -> Any:
        if self._canned is None:
            return self._cursor.fetchone()
        return next(self._canned.rows, None)

    def fetchmany(self, size: int | None = None) -> list[Any]:
        if self._canned is None:
            if size is None:
                return self._cursor.fetchmany()
            return self._cursor.fetchmany(size)
        if size is None:
            size = getattr(self._cursor, "arraysize", 1) or 1
        return list(itertools.islice(self._canned.rows, size))

    def fetchall(self) -> list[Any]:
        if self._canned is None:
            return self._cursor.fetchall()
        return list(self._canned.rows)

    def close(self) -> None:
        # rowcount stays readable after close, as with driver cursors
        self._cursor.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cursor, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in TrackedCursor.__slots__:
            object.__setattr__(self, name, value)
        else:
            setattr(self._cursor, name, value)

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from query_tracker.errors import QueryAlreadySettledError, QueryRejectedError
from query_tracker.tracker.channel import ResponseChannel

logger = structlog.get_logger()

Bindings = list[Any] | dict[str, Any]


class QueryCall(BaseModel):
    """Raw description of one intercepted call, as built by a shim."""

    model_config = ConfigDict(frozen=True)

    sql: str
    bindings: Bindings = Field(default_factory=list)
    method: str = "raw"
    transacting: bool = False
    stream: bool = False
    many: bool = False


class QueryResponse(BaseModel):
    """Canned answer handed back to the shim."""

    model_config = ConfigDict(frozen=True)

    data: Any = None
    stream: bool = False
    columns: list[str] | None = None
    rowcount: int | None = None
    lastrowid: int | None = None


class QueryRecord(BaseModel):
    """An intercepted call plus the controls that answer it.

    Exactly one of ``response`` or ``reject`` must be called for the
    original caller to complete.
    """

    model_config = ConfigDict(frozen=True)

    sql: str
    bindings: Bindings = Field(default_factory=list)
    method: str
    transacting: bool = False
    stream: bool = False
    many: bool = False
    step: int

    _channel: ResponseChannel = PrivateAttr()

    @classmethod
    def from_call(cls, call: QueryCall, step: int, channel: ResponseChannel) -> QueryRecord:
        record = cls(**call.model_dump(), step=step)
        record._channel = channel
        return record

    @property
    def settled(self) -> bool:
        return self._channel.settled

    def response(
        self,
        data: Any = None,
        *,
        stream: bool = False,
        columns: Iterable[str] | None = None,
        rowcount: int | None = None,
        lastrowid: int | None = None,
    ) -> None:
        """Answer the query with ``data``.

        With ``stream=True`` rows are pulled from ``data`` one at a time as
        the caller fetches them instead of being materialized up front.
        """
        if self.settled:
            raise QueryAlreadySettledError(f"Query at step {self.step} has already been answered")
        if not stream and data is not None and not isinstance(data, (str, bytes, Mapping)):
            if isinstance(data, Iterable):
                data = list(data)
        self._channel.resolve(
            QueryResponse(
                data=data,
                stream=stream,
                columns=list(columns) if columns is not None else None,
                rowcount=rowcount,
                lastrowid=lastrowid,
            )
        )
        logger.debug("query_answered", step=self.step, method=self.method, stream=stream)

    def reject(self, error: Any) -> None:
        """Fail the query. Non-exception values are wrapped with the statement text."""
        if self.settled:
            raise QueryAlreadySettledError(f"Query at step {self.step} has already been answered")
        if isinstance(error, BaseException):
            note = f"query: {self.sql}"
            if note not in getattr(error, "__notes__", ()):
                error.add_note(note)
            exc = error
        else:
            exc = QueryRejectedError(self.sql, error)
        self._channel.fail(exc)
        logger.debug("query_rejected", step=self.step, method=self.method, error=str(exc))

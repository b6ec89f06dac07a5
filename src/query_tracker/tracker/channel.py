from __future__ import annotations

import asyncio
from typing import Any

import structlog

from query_tracker.errors import QueryAlreadySettledError

logger = structlog.get_logger()


class ResponseChannel:
    """One-shot completion handle for a single intercepted call.

    The shim awaits ``future``; test code settles it through the owning
    QueryRecord. Settling twice is an error.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if loop is None:
            loop = asyncio.get_running_loop()
        self._future: asyncio.Future[Any] = loop.create_future()
        self._settled = False

    @property
    def future(self) -> asyncio.Future[Any]:
        return self._future

    @property
    def settled(self) -> bool:
        return self._settled

    def resolve(self, value: Any) -> None:
        self._mark_settled()
        if self._future.cancelled():
            logger.debug("response_after_cancel")
            return
        self._future.set_result(value)

    def fail(self, exc: BaseException) -> None:
        self._mark_settled()
        if self._future.cancelled():
            logger.debug("rejection_after_cancel", error=str(exc))
            return
        self._future.set_exception(exc)

    def _mark_settled(self) -> None:
        if self._settled:
            raise QueryAlreadySettledError("Query has already been answered")
        self._settled = True

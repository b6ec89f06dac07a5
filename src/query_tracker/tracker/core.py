from __future__ import annotations

import asyncio
import inspect
from typing import Any, Final

import structlog

from query_tracker.config import Settings, get_settings
from query_tracker.models.domain import QueryCall, QueryRecord
from query_tracker.store.history import QueryHistory
from query_tracker.tracker.channel import ResponseChannel
from query_tracker.tracker.events import EventChannel, Listener

logger = structlog.get_logger()

QUERY_EVENT: Final = "query"


class _NotIntercepted:
    def __repr__(self) -> str:
        return "NOT_INTERCEPTED"


NOT_INTERCEPTED: Final = _NotIntercepted()


class Tracker:
    """Turns intercepted calls into QueryRecords and routes their answers back.

    Between ``install()`` and ``uninstall()`` every call a shim hands to
    ``capture`` is appended to ``queries`` and published as a ``"query"``
    event with ``(record, step)``. Outside that window ``capture`` returns
    ``NOT_INTERCEPTED`` and the shim falls through to the real database.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._tracking = False
        self._history = QueryHistory()
        self._events = EventChannel()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def tracking(self) -> bool:
        return self._tracking

    @property
    def queries(self) -> QueryHistory:
        return self._history

    @property
    def settings(self) -> Settings:
        return self._settings

    def install(self) -> None:
        """Start a clean session. Queries and listeners from earlier sessions are dropped."""
        if self._tracking and self._history.count() and self._settings.warn_on_reinstall:
            logger.warning(
                "tracker_reinstalled",
                discarded_queries=self._history.count(),
            )
        self._history = QueryHistory()
        self._events = EventChannel()
        self._tracking = True
        logger.debug("tracker_installed")

    def uninstall(self) -> None:
        # Unanswered queries stay pending.
        self._tracking = False
        logger.debug("tracker_uninstalled", captured=self._history.count())

    def on(self, event: str, listener: Listener) -> Tracker:
        self._events.on(_check_event(event), listener)
        return self

    def once(self, event: str, listener: Listener) -> Tracker:
        self._events.once(_check_event(event), listener)
        return self

    def off(self, event: str, listener: Listener | None = None) -> Tracker:
        self._events.off(_check_event(event), listener)
        return self

    def listener_count(self, event: str = QUERY_EVENT) -> int:
        return self._events.listener_count(_check_event(event))

    def capture(self, call: QueryCall) -> asyncio.Future[Any] | _NotIntercepted:
        """Record ``call``, notify listeners and return the future its answer resolves."""
        if not self._tracking:
            return NOT_INTERCEPTED

        channel = ResponseChannel()
        step = self._history.count() + 1
        record = QueryRecord.from_call(call, step, channel)
        self._history.append(record)
        logger.debug("query_captured", step=step, method=record.method, sql=record.sql)

        try:
            for result in self._events.dispatch(QUERY_EVENT, record, step):
                if inspect.isawaitable(result):
                    self._watch(record, result)
        except Exception as e:
            if not record.stream:
                raise
            logger.debug("stream_listener_failed", step=step, error=str(e))
            if not record.settled:
                record.reject(e)
        return channel.future

    def _watch(self, record: QueryRecord, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is None:
                return
            if record.settled:
                logger.error("query_listener_failed", step=record.step, error=str(exc))
            else:
                record.reject(exc)

        task.add_done_callback(_done)


def _check_event(event: str) -> str:
    if event != QUERY_EVENT:
        raise ValueError(f"Unsupported event {event!r}; only {QUERY_EVENT!r} is emitted")
    return event

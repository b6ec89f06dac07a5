from __future__ import annotations

import weakref
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.interfaces import ExceptionContext, ExecutionContext
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.util.concurrency import await_only

from query_tracker.db.cursor import TrackedCursor, build_result
from query_tracker.errors import AlreadyMockedError
from query_tracker.models.domain import QueryCall
from query_tracker.tracker.core import NOT_INTERCEPTED, Tracker

logger = structlog.get_logger()

_ABSENT = object()

# set on the dialect by listening for engine-level handle_error
_EVENT_STATE = ("_has_events", "dispatch")


def _tracked_context_cls(base: type[ExecutionContext]) -> type[ExecutionContext]:
    class TrackedExecutionContext(base):  # type: ignore[valid-type,misc]
        def create_cursor(self) -> Any:
            return TrackedCursor(super().create_cursor())

    TrackedExecutionContext.__name__ = TrackedExecutionContext.__qualname__ = (
        f"Tracked{base.__name__}"
    )
    return TrackedExecutionContext


def _bindings(parameters: Any, many: bool = False) -> list[Any] | dict[str, Any]:
    if parameters is None:
        return []
    if many:
        return [_bindings(p) for p in parameters]
    if isinstance(parameters, Mapping):
        return dict(parameters)
    return list(parameters)


def _method(statement: str, context: ExecutionContext | None) -> str:
    if context is not None:
        if context.isddl:
            return "ddl"
        if context.isinsert:
            return "insert"
        if context.isupdate:
            return "update"
        if context.isdelete:
            return "delete"
        compiled = context.compiled
        if compiled is None:
            return "raw"
        # text() and TextualSelect count as raw SQL even when they read rows
        if getattr(compiled.statement, "is_text", False) or getattr(
            compiled.statement, "_is_textual", False
        ):
            return "raw"
        if getattr(compiled.statement, "is_select", False):
            return "select"
    words = statement.split(None, 1)
    return words[0].lower() if words else "raw"


def _result_columns(context: ExecutionContext | None) -> list[str]:
    compiled = getattr(context, "compiled", None)
    if compiled is None:
        return []
    return [col.keyname for col in getattr(compiled, "_result_columns", ())]


class SQLAlchemyShim:
    """Routes an async engine's DBAPI calls through a Tracker.

    The dialect's execute and transaction hooks are replaced with instance
    attributes, and its execution context class with one that hands out
    TrackedCursor proxies so canned results flow through SQLAlchemy's
    normal result handling. ``uninstall`` puts back exactly what was there.
    """

    def __init__(
        self,
        engine: AsyncEngine | Engine,
        tracker: Tracker,
        *,
        track_transactions: bool = True,
    ) -> None:
        sync_engine = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
        if not sync_engine.dialect.is_async:
            raise TypeError(
                f"{sync_engine.dialect.name} dialect is not async; "
                "query_tracker needs an AsyncEngine to suspend intercepted calls"
            )
        self._engine = sync_engine
        self._dialect = sync_engine.dialect
        self._tracker = tracker
        self._track_transactions = track_transactions
        self._installed = False
        self._saved: dict[str, Any] = {}
        self._event_state: dict[str, Any] = {}
        self._originals: dict[str, Callable[..., Any]] = {}
        # keyed by id() of the pooled DBAPI connection; True for explicit transactions
        self._transactions: dict[int, bool] = {}
        self._executing: weakref.WeakSet[Connection] = weakref.WeakSet()
        self._listeners: list[tuple[str, Callable[..., Any]]] = [
            ("before_execute", self._on_before_execute),
            ("begin", self._on_begin),
            ("handle_error", self._on_handle_error),
        ]

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def tracker(self) -> Tracker:
        return self._tracker

    def install(self) -> None:
        if self._installed:
            return
        owner = getattr(self._dialect.do_execute, "__self__", None)
        if isinstance(owner, SQLAlchemyShim):
            raise AlreadyMockedError(
                f"{self._dialect.name} dialect is already routed through another shim"
            )
        hooks: dict[str, Any] = {
            "do_execute": self._do_execute,
            "do_executemany": self._do_executemany,
            "do_execute_no_params": self._do_execute_no_params,
            "do_begin": self._do_begin,
            "do_commit": self._do_commit,
            "do_rollback": self._do_rollback,
            "execution_ctx_cls": _tracked_context_cls(self._dialect.execution_ctx_cls),
        }
        for name, hook in hooks.items():
            self._originals[name] = getattr(self._dialect, name)
            self._saved[name] = self._dialect.__dict__.get(name, _ABSENT)
            setattr(self._dialect, name, hook)
        for name in _EVENT_STATE:
            self._event_state[name] = vars(self._dialect).get(name, _ABSENT)
        for identifier, fn in self._listeners:
            event.listen(self._engine, identifier, fn)
        self._installed = True
        logger.debug("shim_installed", dialect=self._dialect.name)

    def uninstall(self) -> None:
        if not self._installed:
            return
        for identifier, fn in self._listeners:
            event.remove(self._engine, identifier, fn)
        for name, saved in self._event_state.items():
            if saved is _ABSENT:
                vars(self._dialect).pop(name, None)
            else:
                vars(self._dialect)[name] = saved
        for name, saved in self._saved.items():
            if saved is _ABSENT:
                delattr(self._dialect, name)
            else:
                setattr(self._dialect, name, saved)
        self._saved.clear()
        self._event_state.clear()
        self._originals.clear()
        self._transactions.clear()
        self._executing.clear()
        self._installed = False
        logger.debug("shim_uninstalled", dialect=self._dialect.name)

    # engine events

    def _on_before_execute(self, conn: Connection, *args: Any) -> None:
        self._executing.add(conn)

    def _on_begin(self, conn: Connection) -> None:
        # autobegin fires from inside an execute; Connection.begin() does not
        explicit = conn not in self._executing
        self._executing.discard(conn)
        self._transactions[id(conn.connection)] = explicit

    def _on_handle_error(self, context: ExceptionContext) -> None:
        # a statement that failed before reaching the dialect never autobegins
        if context.connection is not None:
            self._executing.discard(context.connection)

    # statement hooks

    def _do_execute(
        self, cursor: Any, statement: str, parameters: Any, context: ExecutionContext | None = None
    ) -> None:
        if not self._intercept(cursor, statement, parameters, context):
            self._originals["do_execute"](cursor, statement, parameters, context)

    def _do_executemany(
        self, cursor: Any, statement: str, parameters: Any, context: ExecutionContext | None = None
    ) -> None:
        if not self._intercept(cursor, statement, parameters, context, many=True):
            self._originals["do_executemany"](cursor, statement, parameters, context)

    def _do_execute_no_params(
        self, cursor: Any, statement: str, context: ExecutionContext | None = None
    ) -> None:
        if not self._intercept(cursor, statement, None, context):
            self._originals["do_execute_no_params"](cursor, statement, context)

    def _intercept(
        self,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: ExecutionContext | None,
        *,
        many: bool = False,
    ) -> bool:
        call = QueryCall(
            sql=statement,
            bindings=_bindings(parameters, many),
            method=_method(statement, context),
            transacting=self._transacting(context),
            stream=bool(context is not None and context.execution_options.get("stream_results")),
            many=many,
        )
        pending = self._tracker.capture(call)
        if pending is NOT_INTERCEPTED:
            return False

        response = await_only(pending)
        if isinstance(cursor, TrackedCursor):
            cursor.load(
                build_result(response, method=call.method, result_columns=_result_columns(context))
            )
        else:
            logger.warning("untracked_cursor", sql=statement)
        return True

    def _transacting(self, context: ExecutionContext | None) -> bool:
        if context is None:
            return False
        conn = context.root_connection
        self._executing.discard(conn)
        return self._transactions.get(id(conn.connection), False)

    # transaction control hooks

    def _do_begin(self, dbapi_connection: Any) -> None:
        if not self._control(dbapi_connection, "begin"):
            self._originals["do_begin"](dbapi_connection)

    def _do_commit(self, dbapi_connection: Any) -> None:
        if not self._control(dbapi_connection, "commit"):
            self._originals["do_commit"](dbapi_connection)

    def _do_rollback(self, dbapi_connection: Any) -> None:
        if not self._control(dbapi_connection, "rollback"):
            self._originals["do_rollback"](dbapi_connection)

    def _control(self, dbapi_connection: Any, method: str) -> bool:
        key = id(dbapi_connection)
        if method == "begin":
            explicit = self._transactions.get(key, False)
        else:
            explicit = self._transactions.pop(key, False)
        if not (explicit and self._track_transactions):
            return False

        pending = self._tracker.capture(
            QueryCall(sql=f"{method.upper()};", method=method, transacting=True)
        )
        if pending is NOT_INTERCEPTED:
            return False
        try:
            await_only(pending)
        except BaseException:
            if method == "begin":
                self._transactions.pop(key, None)
            raise
        return True

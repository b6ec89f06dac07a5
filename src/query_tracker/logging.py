from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from query_tracker.config import get_settings

_LOGGER_NAME = "query_tracker"
_MAX_SQL_LENGTH = 200


def _truncate_sql(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Keep captured statements readable in test output."""
    sql = event_dict.get("sql")
    if isinstance(sql, str) and len(sql) > _MAX_SQL_LENGTH:
        event_dict["sql"] = sql[:_MAX_SQL_LENGTH] + "..."
    return event_dict


def setup_logging(level: str | None = None, *, json_output: bool | None = None) -> logging.Handler:
    """Send query_tracker's events to stderr at ``level``.

    Only the ``query_tracker`` logger gets a handler; the root logger and the
    host application's handlers are left alone. Calling this again replaces
    the handler from the previous call. ``level`` defaults to
    ``Settings.log_level``.
    """
    if level is None:
        level = get_settings().log_level
    if json_output is None:
        json_output = not sys.stderr.isatty()

    annotate = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _truncate_sql,
    ]
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            *annotate,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer(default=repr)
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=annotate,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )

    package_logger = logging.getLogger(_LOGGER_NAME)
    for previous in list(package_logger.handlers):
        if isinstance(previous.formatter, structlog.stdlib.ProcessorFormatter):
            package_logger.removeHandler(previous)
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    return handler

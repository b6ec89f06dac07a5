from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

Listener = Callable[..., Any]


@dataclass(eq=False)
class _Registration:
    listener: Listener
    once: bool = False


class EventChannel:
    """Ordered publish/subscribe registry keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Registration]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(_Registration(listener))

    def once(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(_Registration(listener, once=True))

    def off(self, event: str, listener: Listener | None = None) -> None:
        """Remove ``listener`` from ``event``, or every listener when omitted."""
        if listener is None:
            self._listeners.pop(event, None)
            return
        self._listeners[event] = [
            reg for reg in self._listeners[event] if reg.listener != listener
        ]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def dispatch(self, event: str, *args: Any) -> Iterator[Any]:
        """Call listeners in registration order, yielding each result as it is produced.

        ``once`` listeners are removed before they run. Listeners registered
        during a dispatch only see later events. An exception raised by a
        listener ends the dispatch.
        """
        for reg in list(self._listeners.get(event, [])):
            if reg.once:
                self._remove(event, reg)
            yield reg.listener(*args)

    def _remove(self, event: str, reg: _Registration) -> None:
        regs = self._listeners.get(event)
        if regs and reg in regs:
            regs.remove(reg)

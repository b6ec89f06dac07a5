from __future__ import annotations

from typing import Final

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from query_tracker.config import Settings, get_settings
from query_tracker.db.alchemy import SQLAlchemyShim
from query_tracker.db.base import InterceptionShim
from query_tracker.errors import AlreadyMockedError
from query_tracker.tracker.core import Tracker

logger = structlog.get_logger()

MOCK_ATTR: Final = "_query_tracker_shim"


def _sync_engine(engine: AsyncEngine | Engine) -> Engine:
    return engine.sync_engine if isinstance(engine, AsyncEngine) else engine


class QueryMocker:
    """Binds Trackers to engines and keeps the default Tracker."""

    def __init__(self, tracker: Tracker | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._tracker = tracker or Tracker(self._settings)
        self._mocked: list[Engine] = []

    def get_tracker(self) -> Tracker:
        return self._tracker

    def is_mocked(self, engine: AsyncEngine | Engine) -> bool:
        # option engines share their parent's dialect, which is what gets patched
        return getattr(_sync_engine(engine).dialect, MOCK_ATTR, None) is not None

    def mock(
        self,
        engine: AsyncEngine | Engine,
        tracker: Tracker | None = None,
        *,
        track_transactions: bool | None = None,
    ) -> InterceptionShim:
        """Route ``engine``'s queries through ``tracker`` (default: this mocker's tracker)."""
        sync_engine = _sync_engine(engine)
        if self.is_mocked(sync_engine):
            raise AlreadyMockedError(f"Engine {sync_engine.url!r} is already mocked")
        if track_transactions is None:
            track_transactions = self._settings.track_transactions

        shim: InterceptionShim = SQLAlchemyShim(
            sync_engine,
            tracker or self._tracker,
            track_transactions=track_transactions,
        )
        shim.install()
        setattr(sync_engine.dialect, MOCK_ATTR, shim)
        self._mocked.append(sync_engine)
        logger.info("engine_mocked", url=repr(sync_engine.url), track_transactions=track_transactions)
        return shim

    def unmock(self, engine: AsyncEngine | Engine) -> None:
        """Restore ``engine``. Engines that are not mocked are left alone."""
        sync_engine = _sync_engine(engine)
        dialect = sync_engine.dialect
        shim: InterceptionShim | None = getattr(dialect, MOCK_ATTR, None)
        if shim is None:
            logger.debug("engine_not_mocked", url=repr(sync_engine.url))
            return
        shim.uninstall()
        delattr(dialect, MOCK_ATTR)
        self._mocked = [e for e in self._mocked if e.dialect is not dialect]
        logger.info("engine_unmocked", url=repr(sync_engine.url))

    def unmock_all(self) -> None:
        for sync_engine in list(self._mocked):
            self.unmock(sync_engine)

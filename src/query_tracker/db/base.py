from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class InterceptionShim(Protocol):
    """Protocol for adapter-specific interception of a library's execution hooks."""

    def install(self) -> None:
        """Replace the execution hooks with tracker-aware ones."""
        ...

    def uninstall(self) -> None:
        """Restore the exact hooks that were in place before ``install``."""
        ...

    @property
    def installed(self) -> bool: ...

"""Cooperative cancellation for task chains.

A CancellationSource is owned by whoever may decide to stop work (one per
GitClient session, or one per logical operation). Its read-only
CancellationToken is handed to every chain node and process invocation.

Tokens are not bound to an event loop: waiters register a callback, and the
process runner bridges that callback into its own loop. ``cancel()`` may be
called from any thread.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from gitchain.core.console import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Read-only view of a cancellation signal."""

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once when cancellation is requested.

        If the token is already cancelled the callback runs immediately.
        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._cancelled:
                handle = self._next_id
                self._next_id += 1
                self._callbacks[handle] = callback
                return lambda: self._unregister(handle)
        callback()
        return lambda: None

    def _unregister(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    def _trigger(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        logger.debug("Cancellation requested (%d waiters)", len(callbacks))
        for callback in callbacks:
            callback()


class CancellationSource:
    """Owner side of a cancellation signal."""

    def __init__(self) -> None:
        self._token = CancellationToken()

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def is_cancelled(self) -> bool:
        return self._token.is_cancelled

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._token._trigger()


NEVER_CANCELLED = CancellationToken()
"""Token for chains that are never cancelled (e.g. already completed values)."""


__all__ = ["NEVER_CANCELLED", "CancellationSource", "CancellationToken"]

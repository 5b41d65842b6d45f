"""Ordered publish/subscribe signals.

Each notification kind gets its own typed ``Signal``; subscribers are called
synchronously in registration order. Handlers run on the publisher's call
stack and must return promptly.

Usage:
    head_updated: Signal[[str]] = Signal("head_updated")
    subscription = head_updated.connect(on_head)
    head_updated.emit("ref: refs/heads/main")
    subscription.close()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec

from gitchain.core.console import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")


@dataclass(eq=False)
class Subscription:
    """Handle returned by Signal.connect; closing it detaches the handler."""

    signal: Signal[Any]
    handler: Callable[..., None]
    active: bool = field(default=True)

    def close(self) -> None:
        if self.active:
            self.signal.disconnect(self.handler)
            self.active = False


class Signal(Generic[P]):
    """A named, ordered list of subscribers for one kind of notification."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[P, None]] = []

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, subscribers={len(self._handlers)})"

    def __len__(self) -> int:
        return len(self._handlers)

    def connect(self, handler: Callable[P, None]) -> Subscription:
        self._handlers.append(handler)
        return Subscription(signal=self, handler=handler)

    def disconnect(self, handler: Callable[P, None]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            logger.debug("Handler %r was not connected to %s", handler, self.name)

    def emit(self, *args: P.args, **kwargs: P.kwargs) -> None:
        # Snapshot so handlers may disconnect themselves during delivery.
        for handler in list(self._handlers):
            try:
                handler(*args, **kwargs)
            except Exception:
                logger.exception("Subscriber %r of %s failed", handler, self.name)


__all__ = ["Signal", "Subscription"]

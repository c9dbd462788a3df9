"""
Listener fan-out used by every observable component.

Rules:
- Listeners are plain synchronous callables, invoked in registration order
- A raising listener is logged and skipped; it never breaks fan-out
- add() returns an unsubscribe callable (idempotent)
"""

from __future__ import annotations

from typing import Any, Callable

from observability.logger import log_event, now_ms


Unsubscribe = Callable[[], None]


class ListenerSet:
    """Ordered set of callbacks for one notification channel."""

    def __init__(self, channel: str) -> None:
        self._channel = channel
        self._callbacks: list[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> Unsubscribe:
        """Register a callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def _remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _remove

    def emit(self, *args: Any) -> None:
        """Invoke every callback with args. Snapshot first so callbacks may unsubscribe."""
        for callback in tuple(self._callbacks):
            try:
                callback(*args)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "LISTENER_ERROR",
                    "channel": self._channel,
                    "exception": type(e).__name__,
                    "message": str(e),
                })

    def clear(self) -> None:
        """Drop all callbacks."""
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

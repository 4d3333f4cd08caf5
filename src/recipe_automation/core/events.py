"""Lifecycle event fan-out.

Components publish lifecycle notifications (``executionQueued``, ``jobScheduled``
and friends) through an :class:`EventBus`. Subscribers are plain callables; a
subscriber that returns a coroutine is scheduled on the running loop instead of
being awaited, so publishers never wait on slow consumers.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Callable
from typing import Any

from .logger import get_logger

logger = get_logger("events")

WILDCARD = "*"

EventHandler = Callable[[str, Any], Any]


class EventBus:
    """Registry of event handlers keyed by event name.

    Handlers receive ``(event_name, payload)``. Handlers registered under
    ``"*"`` receive every event.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for an event.

        Args:
            event: Event name, or ``"*"`` for every event
            handler: Callable invoked with ``(event, payload)``

        Returns:
            A callable that removes the subscription
        """
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def handler_count(self, event: str | None = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._handlers.get(event, []))
            return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to its subscribers.

        Handler failures are logged and never reach the publisher.
        """
        with self._lock:
            handlers = list(self._handlers.get(event, [])) + list(
                self._handlers.get(WILDCARD, [])
            )

        for handler in handlers:
            try:
                result = handler(event, payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as exc:
                logger.error("Event handler for %s failed: %s", event, exc, exc_info=True)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Dropping async handler for %s: no running event loop", event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        task.add_done_callback(lambda t: self._report(event, t))

    @staticmethod
    def _report(event: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async event handler for %s failed: %s", event, exc)


__all__ = ["EventBus", "EventHandler", "WILDCARD"]

"""EventChannel for in-process publish/subscribe fan-out.

Monitoring components publish named events (health_check, alert,
alert_resolved, dashboard_update, ...) and subscribers are notified
synchronously in registration order.

- Errors in one handler are logged and never stop delivery to the others
- Coroutine handlers are scheduled on the running loop, not awaited inline
- subscribe() returns an unsubscribe handle
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]


class Subscription:
    """Cancellation handle returned by EventChannel.subscribe()."""

    def __init__(self, channel: EventChannel, event: str, handler: EventHandler) -> None:
        self._channel = channel
        self._event = event
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Remove the handler. Safe to call multiple times."""
        if not self._active:
            return
        self._active = False
        self._channel._remove(self._event, self._handler)


class EventChannel:
    """Observer list keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        """Register a handler for an event name.

        Args:
            event: Event name, e.g. "alert"
            handler: Callable receiving the event payload; may be async

        Returns:
            Subscription whose unsubscribe() removes the handler
        """
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))

    def publish(self, event: str, payload: Any) -> None:
        """Notify every handler of an event in registration order."""
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.exception("Error in %s event handler: %s", event, e)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def _remove(self, event: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping async %s handler", event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run(event, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _run(event: str, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.exception("Error in async %s event handler: %s", event, e)

"""Call tracker for in-flight service calls.

Records the start and end of individual service calls. A terminated call is
forwarded to the completion callback (the metrics aggregator) and appended to
a bounded history ring.

Ending an unknown or already-ended call id is a no-op logged at WARNING.
Callers completing the same call twice from racing contexts are never
penalized with an exception.

Known limitation: a call that is started and never ended stays in the
in-flight map for the lifetime of the process. There is no reaper.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from src.monitoring.models import ServiceCall

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[ServiceCall], None]

DEFAULT_HISTORY_SIZE = 1000


class CallTracker:
    """Tracks in-flight calls and keeps a ring of terminated ones.

    All mutation of the in-flight map and the history ring happens under a
    single lock, since starts and ends arrive from independent request
    contexts (threads or tasks).
    """

    def __init__(
        self,
        on_complete: CompletionCallback | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """Initialize the tracker.

        Args:
            on_complete: Called with each terminated call, under the tracker lock
            history_size: Maximum number of terminated calls kept in history
        """
        self._on_complete = on_complete
        self._active: dict[str, ServiceCall] = {}
        self._history: deque[ServiceCall] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def start_call(
        self,
        service_name: str,
        method_name: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Register an in-flight call.

        Args:
            service_name: Name of the service being called
            method_name: Name of the operation on that service
            metadata: Optional context stored with the call

        Returns:
            Opaque, unique call id to pass to end_call/end_call_with_error
        """
        call_id = f"{service_name}.{method_name}.{uuid4().hex}"
        call = ServiceCall(
            service_name=service_name,
            method_name=method_name,
            start_time=datetime.now(tz=timezone.utc),
            start_mono=time.monotonic(),
            metadata=dict(metadata) if metadata else None,
        )

        with self._lock:
            self._active[call_id] = call

        logger.debug(
            "Service call started (call_id=%s, service=%s, method=%s)",
            call_id,
            service_name,
            method_name,
        )
        return call_id

    def end_call(self, call_id: str, result: Any = None) -> bool:
        """Mark a call as successfully completed.

        Args:
            call_id: Id returned by start_call
            result: Optional call result, only its presence is logged

        Returns:
            True if the call was found and completed, False otherwise
        """
        call = self._complete(call_id, success=True, error=None)
        if call is None:
            logger.warning("Attempted to end unknown service call (call_id=%s)", call_id)
            return False

        logger.debug(
            "Service call completed (call_id=%s, duration_ms=%.1f, result=%s)",
            call_id,
            call.duration_ms,
            "present" if result is not None else "none",
        )
        return True

    def end_call_with_error(self, call_id: str, error: BaseException | str) -> bool:
        """Mark a call as failed.

        The failure is recorded as data; nothing is raised here.

        Args:
            call_id: Id returned by start_call
            error: Exception (or message) that terminated the call

        Returns:
            True if the call was found and completed, False otherwise
        """
        message = str(error)
        call = self._complete(call_id, success=False, error=message)
        if call is None:
            logger.warning(
                "Attempted to end unknown service call with error (call_id=%s, error=%s)",
                call_id,
                message,
            )
            return False

        logger.error(
            "Service call failed (call_id=%s, service=%s, method=%s, duration_ms=%.1f): %s",
            call_id,
            call.service_name,
            call.method_name,
            call.duration_ms,
            message,
        )
        return True

    def get_active_calls(self) -> list[ServiceCall]:
        with self._lock:
            return list(self._active.values())

    def get_call_history(self, limit: int | None = None) -> list[ServiceCall]:
        """Get terminated calls, oldest first.

        Args:
            limit: If given, only the most recent `limit` calls

        Returns:
            Copy of the history ring
        """
        with self._lock:
            history = list(self._history)
        if limit:
            return history[-limit:]
        return history

    def clear(self) -> None:
        """Drop in-flight calls and history. Caller must hold the lock."""
        self._active.clear()
        self._history.clear()

    def _complete(self, call_id: str, success: bool, error: str | None) -> ServiceCall | None:
        with self._lock:
            call = self._active.pop(call_id, None)
            if call is None:
                return None

            finished = call.finish(success=success, error=error)
            self._history.append(finished)

            if self._on_complete is not None:
                self._on_complete(finished)

        return finished

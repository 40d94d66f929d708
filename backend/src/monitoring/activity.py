"""Request and session activity tracking.

Fed by the request middleware: track_request() on every request,
track_session() when conversation sessions start and end.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

# Request buckets older than this are pruned
REQUEST_RETENTION_SECONDS = 3600.0
REQUEST_BUCKET_SECONDS = 1.0


@dataclass
class _RequestBucket:
    started_mono: float
    count: int


class RequestActivity:
    """Active session set plus per-second request buckets for the last hour."""

    def __init__(self) -> None:
        self._sessions: set[str] = set()
        self._requests: deque[_RequestBucket] = deque()
        self._lock = threading.Lock()

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    def track_session(self, session_id: str, action: Literal["start", "end"]) -> None:
        """Record a session starting or ending.

        Args:
            session_id: Conversation session identifier
            action: "start" or "end"
        """
        if action not in ("start", "end"):
            raise ValueError(f"Unknown session action: {action}")

        with self._lock:
            if action == "start":
                self._sessions.add(session_id)
            else:
                self._sessions.discard(session_id)
            total = len(self._sessions)

        logger.debug("Session %s (session_id=%s, total=%d)", action, session_id, total)

    def track_request(self) -> None:
        """Count one incoming request."""
        now = time.monotonic()
        with self._lock:
            if self._requests and now - self._requests[-1].started_mono < REQUEST_BUCKET_SECONDS:
                self._requests[-1].count += 1
            else:
                self._requests.append(_RequestBucket(started_mono=now, count=1))
            self._prune(now)

    def requests_per_minute(self) -> int:
        """Number of requests counted in the last 60 seconds."""
        cutoff = time.monotonic() - 60
        with self._lock:
            return sum(b.count for b in self._requests if b.started_mono > cutoff)

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._requests.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - REQUEST_RETENTION_SECONDS
        while self._requests and self._requests[0].started_mono <= cutoff:
            self._requests.popleft()

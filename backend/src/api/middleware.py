# backend/src/api/middleware.py
"""Request tracking middleware.

Counts every request for requests-per-minute, stamps X-Request-ID and
X-Response-Time headers, and follows conversation session lifecycles:
- POST .../sessions answered with 201 and a JSON "sessionId" starts a session
- DELETE .../sessions/{id} answered with 204 ends it
"""

import json
import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.monitoring.setup import MonitoringContext, get_monitoring

logger = logging.getLogger(__name__)

SESSIONS_SEGMENT = "/sessions"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Feeds request and session activity into the monitoring engine."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = f"req-{uuid4().hex}"
        start = time.monotonic()

        context = get_monitoring()
        if context is not None:
            context.system_monitor.track_request()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request error (request_id=%s, method=%s, path=%s, duration_ms=%.1f): %s",
                request_id,
                request.method,
                request.url.path,
                (time.monotonic() - start) * 1000,
                e,
            )
            raise

        if context is not None:
            response = await self._track_session(context, request, response, request_id)

        duration_ms = (time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.1f}"

        if response.status_code == 429:
            logger.warning(
                "Rate limit exceeded (request_id=%s, path=%s)", request_id, request.url.path
            )

        logger.debug(
            "%s %s -> %d (%.1fms, request_id=%s)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    async def _track_session(
        self, context: MonitoringContext, request: Request, response: Response, request_id: str
    ) -> Response:
        path = request.url.path.rstrip("/")

        if request.method == "DELETE" and f"{SESSIONS_SEGMENT}/" in path:
            if response.status_code == 204:
                session_id = path.rsplit("/", 1)[-1]
                context.system_monitor.track_session(session_id, "end")
                logger.info("Session ended (session_id=%s, request_id=%s)", session_id, request_id)
            return response

        if request.method == "POST" and path.endswith(SESSIONS_SEGMENT):
            if response.status_code != 201:
                return response

            body = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore[attr-defined]
            try:
                session_id = json.loads(body).get("sessionId")
            except (ValueError, AttributeError) as e:
                logger.warning(
                    "Failed to parse session creation response (request_id=%s): %s",
                    request_id,
                    e,
                )
                session_id = None

            if session_id:
                context.system_monitor.track_session(str(session_id), "start")
                logger.info(
                    "Session created (session_id=%s, request_id=%s)", session_id, request_id
                )

            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        return response

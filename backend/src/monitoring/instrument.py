"""Instrumented call helpers.

Any collaborator wraps its own outward calls with these instead of calling
start_call/end_call by hand:

    result = await instrumented_call(
        monitor, "SpeechToText", "transcribe", client.transcribe, audio
    )

    @monitored(monitor, "DocumentExporter")
    async def export_pdf(doc): ...

A failure in the wrapped call is recorded (success=False, error captured) and
the original exception is re-raised unchanged to the caller.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from src.monitoring.service_monitor import ServiceMonitor

T = TypeVar("T")


def _call_metadata(args: tuple[Any, ...], kwargs: dict[str, Any]) -> dict[str, Any]:
    return {
        "args_count": len(args) + len(kwargs),
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
    }


async def instrumented_call(
    monitor: ServiceMonitor,
    service_name: str,
    method_name: str,
    fn: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """Invoke fn while tracking it as one service call.

    Args:
        monitor: ServiceMonitor to record the call in
        service_name: Service the call belongs to
        method_name: Operation name
        fn: Sync or async callable to invoke
        *args: Positional arguments for fn
        **kwargs: Keyword arguments for fn

    Returns:
        Whatever fn returns (awaited if it returns an awaitable)
    """
    call_id = monitor.start_call(service_name, method_name, _call_metadata(args, kwargs))
    try:
        result = fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
    except BaseException as e:
        monitor.end_call_with_error(call_id, e)
        raise

    monitor.end_call(call_id, result)
    return result


def monitored(
    monitor: ServiceMonitor,
    service_name: str,
    method_name: str | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator form of instrumented_call.

    Sync functions stay sync; async functions stay async.

    Args:
        monitor: ServiceMonitor to record calls in
        service_name: Service the decorated function belongs to
        method_name: Operation name, defaults to the function name
    """

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        name = method_name or fn.__name__

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await instrumented_call(monitor, service_name, name, fn, *args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            call_id = monitor.start_call(service_name, name, _call_metadata(args, kwargs))
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                monitor.end_call_with_error(call_id, e)
                raise
            monitor.end_call(call_id, result)
            return result

        return sync_wrapper

    return decorator

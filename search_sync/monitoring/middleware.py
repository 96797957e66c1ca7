"""
Monitoring middleware for automatic timing.

This module provides:
- Queue operation timing
- Consumer cycle timing
- HTTP request timing middleware for the monitoring server
- A generic performance monitoring decorator
"""

import asyncio
import time
import functools
from typing import Callable, Any
from contextlib import asynccontextmanager

from aiohttp import web

from ..core.logging import log_performance


def consumer_operation_timer(operation: str):
    """
    Decorator for timing consumer operations.

    Args:
        operation: Operation name (e.g., 'poll', 'process_messages')
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                duration = time.perf_counter() - start_time

                message_count = result.get("received", 0) if isinstance(result, dict) else 0
                log_performance(
                    f"consumer_{operation}",
                    duration * 1000,
                    message_count=message_count
                )

                return result

            except Exception as e:
                duration = time.perf_counter() - start_time
                log_performance(
                    f"consumer_{operation}",
                    duration * 1000,
                    success=False,
                    error=str(e)
                )
                raise

        return async_wrapper

    return decorator


@asynccontextmanager
async def time_queue_operation(operation: str, queue_url: str):
    """
    Context manager for timing queue API calls.

    Usage:
        async with time_queue_operation('receive', queue_url):
            response = await asyncio.to_thread(client.receive_message, ...)
    """
    start_time = time.perf_counter()

    try:
        yield
        duration = time.perf_counter() - start_time
        log_performance(f"sqs_{operation}", duration * 1000, queue_url=queue_url)

    except Exception as e:
        duration = time.perf_counter() - start_time
        log_performance(
            f"sqs_{operation}",
            duration * 1000,
            success=False,
            queue_url=queue_url,
            error=str(e)
        )
        raise


class MetricsMiddleware:
    """
    Middleware for request timing in aiohttp applications.

    Logs method, path, status and duration of every request served by
    the monitoring server.
    """

    @web.middleware
    async def middleware(self, request: web.Request, handler: Callable) -> web.StreamResponse:
        """Middleware function for request processing."""
        start_time = time.perf_counter()
        method = request.method
        path = request.path

        try:
            response = await handler(request)

            log_performance(
                f"http_{method}_{path}",
                (time.perf_counter() - start_time) * 1000,
                success=response.status < 500,
                status_code=response.status
            )

            return response

        except web.HTTPException as e:
            log_performance(
                f"http_{method}_{path}",
                (time.perf_counter() - start_time) * 1000,
                success=e.status < 500,
                status_code=e.status
            )
            raise

    def setup_app(self, app: web.Application) -> None:
        """Set up the middleware on an aiohttp application."""
        app.middlewares.append(self.middleware)


def monitor_performance(operation: str):
    """
    Generic performance monitoring decorator.

    Args:
        operation: Operation name for logging
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
                log_performance(operation, (time.perf_counter() - start_time) * 1000)
                return result

            except Exception as e:
                log_performance(
                    operation,
                    (time.perf_counter() - start_time) * 1000,
                    success=False,
                    error=str(e)
                )
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
                log_performance(operation, (time.perf_counter() - start_time) * 1000)
                return result

            except Exception as e:
                log_performance(
                    operation,
                    (time.perf_counter() - start_time) * 1000,
                    success=False,
                    error=str(e)
                )
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator

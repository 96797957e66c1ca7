"""
Monitoring service for the search sync service.

This module provides:
- Sync metrics collection with a sliding window of processing times
- Prometheus exposition through prometheus_client
- Health checks with host information
- HTTP endpoints for health, readiness, metrics and status
"""

import logging
import platform
import statistics
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Tuple

import psutil
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from ..config import MonitoringConfig
from .middleware import MetricsMiddleware

logger = logging.getLogger(__name__)

PROCESSING_WINDOW_SIZE = 1000
METRIC_PREFIX = "search_sync"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class HealthStatus:
    """Health check status container."""
    status: str  # "healthy", "unhealthy"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    checks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    message: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "healthy": self.healthy,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "checks": self.checks,
            "message": self.message,
        }


class _SyncMetricsExporter:
    """Custom Prometheus collector reading a MetricsCollector's current state."""

    def __init__(self, collector: "MetricsCollector"):
        self.collector = collector

    def collect(self):
        metrics = self.collector.get_metrics()

        received = CounterMetricFamily(
            f"{METRIC_PREFIX}_messages_received",
            "Total number of messages received",
        )
        received.add_metric([], metrics["messagesReceived"])
        yield received

        processed = CounterMetricFamily(
            f"{METRIC_PREFIX}_messages_processed",
            "Total number of messages processed successfully",
        )
        processed.add_metric([], metrics["messagesProcessed"])
        yield processed

        failed = CounterMetricFamily(
            f"{METRIC_PREFIX}_messages_failed",
            "Total number of messages that failed processing",
        )
        failed.add_metric([], metrics["messagesFailed"])
        yield failed

        yield GaugeMetricFamily(
            f"{METRIC_PREFIX}_processing_time_avg",
            "Average processing time in milliseconds",
            value=metrics["averageProcessingTime"],
        )
        yield GaugeMetricFamily(
            f"{METRIC_PREFIX}_error_rate",
            "Current error rate (0-1)",
            value=metrics["errorRate"],
        )

        stats = self.collector.get_performance_stats()
        if stats:
            percentiles = GaugeMetricFamily(
                f"{METRIC_PREFIX}_processing_time_ms",
                "Processing time percentiles over the recent window in milliseconds",
                labels=["quantile"],
            )
            for quantile, key in (("0.5", "median"), ("0.95", "p95"), ("0.99", "p99")):
                percentiles.add_metric([quantile], stats[key])
            yield percentiles


class MetricsCollector:
    """
    Counters and processing-time statistics for sync operations.

    Safe to call from the poll loop and from manual processing calls at
    the same time.
    """

    def __init__(self, window_size: int = PROCESSING_WINDOW_SIZE):
        self._lock = threading.Lock()
        self._window_size = window_size
        self._durations: Deque[float] = deque(maxlen=window_size)
        # (completed_at_ms, processed, failed) per recorded completion
        self._completions: Deque[Tuple[int, int, int]] = deque(maxlen=window_size)

        self.messages_received = 0
        self.messages_processed = 0
        self.messages_failed = 0
        self.last_processed_at: Optional[int] = None

        self.registry = CollectorRegistry()
        self.registry.register(_SyncMetricsExporter(self))

    def record_message_received(self, count: int = 1) -> None:
        """Record messages pulled from the queue or submitted manually."""
        with self._lock:
            self.messages_received += count

    def record_message_processed(self, duration_ms: Optional[float] = None, count: int = 1) -> None:
        """Record successfully processed messages."""
        with self._lock:
            self.messages_processed += count
            self.last_processed_at = _now_ms()
            if duration_ms is not None:
                self._durations.append(float(duration_ms))
            self._completions.append((self.last_processed_at, count, 0))

        logger.debug(f"Message processed in {duration_ms}ms (total: {self.messages_processed})")

    def record_message_failed(
        self,
        error: Optional[Any] = None,
        duration_ms: Optional[float] = None,
        count: int = 1,
    ) -> None:
        """Record failed messages, optionally with the time spent on them."""
        with self._lock:
            self.messages_failed += count
            if duration_ms is not None:
                self._durations.append(float(duration_ms))
            self._completions.append((_now_ms(), 0, count))
            total_failed = self.messages_failed

        logger.error(f"Message processing failed (total failed: {total_failed}): {error}")

    def record_batch(self, processed: int, failed: int, duration_ms: float) -> None:
        """Record one batch outcome as a single duration sample."""
        with self._lock:
            self.messages_processed += processed
            self.messages_failed += failed
            now = _now_ms()
            if processed:
                self.last_processed_at = now
            self._durations.append(float(duration_ms))
            self._completions.append((now, processed, failed))

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of the current counters."""
        with self._lock:
            completed = self.messages_processed + self.messages_failed
            average = sum(self._durations) / len(self._durations) if self._durations else 0.0
            return {
                "messagesReceived": self.messages_received,
                "messagesProcessed": self.messages_processed,
                "messagesFailed": self.messages_failed,
                "averageProcessingTime": average,
                "errorRate": self.messages_failed / completed if completed else 0.0,
                "lastProcessedAt": self.last_processed_at,
            }

    def get_performance_stats(self) -> Optional[Dict[str, Any]]:
        """Distribution of processing times over the window, or None when empty."""
        with self._lock:
            durations = sorted(self._durations)

        if not durations:
            return None

        count = len(durations)
        return {
            "count": count,
            "min": durations[0],
            "max": durations[-1],
            "average": sum(durations) / count,
            "median": statistics.median(durations),
            "p95": durations[min(int(count * 0.95), count - 1)],
            "p99": durations[min(int(count * 0.99), count - 1)],
        }

    def get_throughput_stats(self, window_ms: int = 60000) -> Dict[str, Any]:
        """Throughput over the trailing ``window_ms`` milliseconds."""
        cutoff = _now_ms() - window_ms
        with self._lock:
            recent = [entry for entry in self._completions if entry[0] >= cutoff]
            error_rate_total = self.messages_processed + self.messages_failed
            error_rate = self.messages_failed / error_rate_total if error_rate_total else 0.0

        processed = sum(entry[1] for entry in recent)
        failed = sum(entry[2] for entry in recent)
        seconds = window_ms / 1000 if window_ms > 0 else 1

        return {
            "windowMs": window_ms,
            "messagesPerSecond": processed / seconds,
            "messagesPerMinute": processed / seconds * 60,
            "successRate": processed / (processed + failed) if processed + failed else 1.0,
            "errorRate": error_rate,
        }

    def reset(self) -> None:
        """Zero all counters and clear the window."""
        with self._lock:
            self.messages_received = 0
            self.messages_processed = 0
            self.messages_failed = 0
            self.last_processed_at = None
            self._durations.clear()
            self._completions.clear()

        logger.info("Sync metrics reset")

    def export_prometheus(self) -> str:
        """Render the current state in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode("utf-8")


class HealthChecker:
    """Health check manager built on the sync manager's health verdict."""

    def __init__(self, manager: Any, cache_seconds: int = 5):
        self.manager = manager
        self.cache_seconds = cache_seconds
        self._last_check_time: Optional[float] = None
        self._last_status: Optional[HealthStatus] = None

    async def run_health_checks(self) -> HealthStatus:
        """Run all health checks."""
        now = time.monotonic()

        # Return cached result if recent
        if (self._last_check_time is not None and
                self._last_status is not None and
                now - self._last_check_time < self.cache_seconds):
            return self._last_status

        sync_health = await self.manager.health_check()
        checks = {
            "sync": sync_health,
            "system": self.system_info(),
        }

        status = HealthStatus(
            status="healthy" if sync_health.get("healthy") else "unhealthy",
            checks=checks,
            message=sync_health.get("reason"),
        )

        self._last_check_time = now
        self._last_status = status
        return status

    @staticmethod
    def system_info() -> Dict[str, Any]:
        process = psutil.Process()
        return {
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
            "memory_total": psutil.virtual_memory().total,
            "process_memory_rss": process.memory_info().rss,
        }


class MonitoringService:
    """HTTP surface for health, readiness, metrics and status."""

    def __init__(self, config: MonitoringConfig, manager: Any):
        self.config = config
        self.manager = manager
        self.health_checker = HealthChecker(manager, cache_seconds=config.health_cache_seconds)

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all monitoring routes."""
        app = web.Application()
        MetricsMiddleware().setup_app(app)

        app.router.add_get('/health', self.health_check_handler)
        app.router.add_get('/ready', self.readiness_handler)
        app.router.add_get('/metrics', self.metrics_handler)
        app.router.add_get('/metrics.json', self.metrics_json_handler)
        app.router.add_get('/status', self.status_handler)
        return app

    async def start(self) -> None:
        """Start the monitoring HTTP server."""
        if not self.config.enabled:
            logger.info("Monitoring disabled in configuration")
            return

        logger.info("Starting monitoring service...")
        self.app = self.create_app()

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, '0.0.0.0', self.config.health_check_port)
        await self.site.start()

        logger.info(f"Health check server started on port {self.config.health_check_port}")

    async def stop(self) -> None:
        """Stop the monitoring HTTP server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Monitoring service stopped")

    @staticmethod
    def _failure(reason: str, status: int = 503) -> web.Response:
        return web.json_response(
            {
                "healthy": False,
                "reason": reason,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            status=status,
        )

    async def health_check_handler(self, request: web.Request) -> web.Response:
        """Health check endpoint handler."""
        try:
            health_status = await self.health_checker.run_health_checks()
            return web.json_response(
                health_status.to_dict(),
                status=200 if health_status.healthy else 503,
            )
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return self._failure(f"Health check failed: {e}")

    async def readiness_handler(self, request: web.Request) -> web.Response:
        """Ready once the sync manager is running."""
        ready = bool(getattr(self.manager, "is_running", False))
        return web.json_response(
            {
                "ready": ready,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            status=200 if ready else 503,
        )

    async def metrics_handler(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint handler."""
        if not self.config.prometheus_enabled:
            return web.Response(status=404, text="Metrics not enabled")

        try:
            body = self.manager.export_metrics()
        except Exception as e:
            logger.error(f"Metrics export failed: {e}")
            return web.Response(status=500, text="Metrics export failed")

        response = web.Response(body=body.encode("utf-8"))
        response.headers["Content-Type"] = CONTENT_TYPE_LATEST
        return response

    async def metrics_json_handler(self, request: web.Request) -> web.Response:
        """JSON metrics endpoint handler."""
        try:
            return web.json_response(self.manager.get_metrics())
        except Exception as e:
            logger.error(f"Metrics collection failed: {e}")
            return self._failure(f"Metrics collection failed: {e}", status=500)

    async def status_handler(self, request: web.Request) -> web.Response:
        """Full sync status endpoint handler."""
        try:
            return web.json_response(await self.manager.get_status())
        except Exception as e:
            logger.error(f"Status collection failed: {e}")
            return self._failure(f"Status collection failed: {e}", status=500)


@asynccontextmanager
async def create_monitoring_service(config: MonitoringConfig, manager: Any):
    """
    Context manager for monitoring service lifecycle.

    Usage:
        async with create_monitoring_service(config.monitoring, manager) as monitoring:
            ...
    """
    service = MonitoringService(config, manager)
    await service.start()

    try:
        yield service
    finally:
        await service.stop()

"""
Monitoring package for the search sync service.

This package provides:
- Sync metrics collection and Prometheus exposition
- Health check endpoints and monitoring
- Performance monitoring and timing
"""

from .service import (
    HealthStatus,
    MetricsCollector,
    HealthChecker,
    MonitoringService,
    create_monitoring_service,
)

from .middleware import (
    consumer_operation_timer,
    time_queue_operation,
    MetricsMiddleware,
    monitor_performance,
)

__all__ = [
    # Service classes
    "HealthStatus",
    "MetricsCollector",
    "HealthChecker",
    "MonitoringService",

    # Service functions
    "create_monitoring_service",

    # Middleware classes
    "MetricsMiddleware",

    # Middleware decorators
    "consumer_operation_timer",
    "monitor_performance",

    # Middleware context managers
    "time_queue_operation",
]

"""
Logging configuration for the search sync service.

This module provides:
- Structured logging with JSON output
- Console and rotating file handlers
- Log correlation IDs carried through contextvars
- Performance logging for index writes and batches
- Configurable log levels per component
"""

import os
import sys
import uuid
import asyncio
import functools
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger

from ..config import LoggingConfig, Environment


# Context variables for log correlation
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
event_id: ContextVar[Optional[str]] = ContextVar('event_id', default=None)

logger = logging.getLogger('search_sync')


class StructuredFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname

        if correlation_id.get():
            log_record['correlation_id'] = correlation_id.get()
        if event_id.get():
            log_record['event_id'] = event_id.get()

        log_record['service'] = 'search-sync'
        log_record['version'] = os.getenv('APP_VERSION', '1.0.0')
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


class PerformanceFilter(logging.Filter):
    """Copies perf_* extras onto plain-text records so formatters can use them."""

    def filter(self, record):
        if hasattr(record, 'extra') and record.extra:
            for key, value in record.extra.items():
                if key.startswith('perf_'):
                    setattr(record, key, value)

        return True


class LogContextManager:
    """Context manager for log correlation."""

    def __init__(self, corr_id: Optional[str] = None, evt_id: Optional[str] = None):
        self.corr_id = corr_id or correlation_id.get()
        self.evt_id = evt_id or event_id.get()
        self.token_corr = None
        self.token_evt = None

    def __enter__(self):
        self.token_corr = correlation_id.set(self.corr_id)
        self.token_evt = event_id.set(self.evt_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        correlation_id.reset(self.token_corr)
        event_id.reset(self.token_evt)


def setup_logging(config: LoggingConfig, environment: Environment) -> None:
    """
    Set up logging handlers and levels.

    Args:
        config: Logging configuration
        environment: Deployment environment
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    level = getattr(logging, config.level, logging.INFO)
    root_logger.setLevel(level)

    if config.structured:
        formatter = StructuredFormatter(
            fmt='%(timestamp)s %(level)s %(name)s %(message)s',
            datefmt='%Y-%m-%dT%H:%M:%SZ'
        )
    else:
        formatter = logging.Formatter(
            fmt=config.format,
            datefmt=config.date_format
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    if config.log_to_file and config.log_file_path:
        log_path = Path(config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PerformanceFilter())
        root_logger.addHandler(file_handler)

    if environment == Environment.PRODUCTION:
        # Reduce noise from the AWS SDK and the HTTP server
        logging.getLogger('botocore').setLevel(logging.WARNING)
        logging.getLogger('boto3').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    _setup_component_loggers(environment)


def _setup_component_loggers(environment: Environment) -> None:
    """Set up component-specific loggers."""

    consumer_logger = logging.getLogger('search_sync.consumer')
    if environment == Environment.DEVELOPMENT:
        consumer_logger.setLevel(logging.DEBUG)
    else:
        consumer_logger.setLevel(logging.INFO)

    sync_logger = logging.getLogger('search_sync.sync')
    sync_logger.setLevel(logging.INFO)

    monitoring_logger = logging.getLogger('search_sync.monitoring')
    monitoring_logger.setLevel(logging.INFO)


class PerformanceLogger:
    """Logger for performance monitoring."""

    def __init__(self, logger_name: str = 'search_sync.performance'):
        self.logger = logging.getLogger(logger_name)

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log operation performance."""
        level = logging.INFO if success else logging.WARNING

        extra_data = extra or {}
        extra_data.update({
            'perf_operation': operation,
            'perf_duration_ms': duration_ms,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Operation {operation} completed in {duration_ms:.2f}ms",
            extra=extra_data
        )

    def log_batch(
        self,
        batch_size: int,
        processing_time_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log batch processing performance."""
        level = logging.INFO if success else logging.ERROR

        throughput = batch_size / (processing_time_ms / 1000) if processing_time_ms > 0 else 0

        extra_data = extra or {}
        extra_data.update({
            'perf_batch_size': batch_size,
            'perf_processing_time_ms': processing_time_ms,
            'perf_throughput_msg_per_sec': throughput,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Processed batch of {batch_size} events in {processing_time_ms:.2f}ms "
            f"({throughput:.2f} events/s)",
            extra=extra_data
        )

    def log_index_write(
        self,
        operation: str,
        collection: str,
        document_count: int,
        duration_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log index write performance."""
        level = logging.INFO if success else logging.ERROR

        docs_per_sec = document_count / (duration_ms / 1000) if duration_ms > 0 else 0

        extra_data = extra or {}
        extra_data.update({
            'perf_operation': operation,
            'perf_collection': collection,
            'perf_document_count': document_count,
            'perf_duration_ms': duration_ms,
            'perf_docs_per_sec': docs_per_sec,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Index {operation} on {collection}: {document_count} documents in {duration_ms:.2f}ms",
            extra=extra_data
        )


performance_logger = PerformanceLogger()


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()


def with_correlation_id(corr_id: Optional[str] = None):
    """Decorator to set correlation ID for function execution."""
    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            cid = corr_id or str(uuid.uuid4())
            with LogContextManager(corr_id=cid):
                return await func(*args, **kwargs)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            cid = corr_id or str(uuid.uuid4())
            with LogContextManager(corr_id=cid):
                return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def log_performance(operation: str, duration_ms: float, success: bool = True, **extra):
    """Convenience function for performance logging."""
    performance_logger.log_operation(operation, duration_ms, success=success, extra=extra)
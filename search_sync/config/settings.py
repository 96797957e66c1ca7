"""
Centralized configuration management for the search sync service.

This module provides:
- Environment variable parsing
- Type-safe configuration classes
- Default value management
- Configuration validation

Settings are read once at startup. A missing queue URL is a valid
configuration: the service then runs without a queue consumer and only
accepts manually submitted events.
"""

import os
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class ConfigurationError(ValueError):
    """Raised when required settings are absent or out of range."""
    pass


class Environment(str, Enum):
    """Deployment environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


@dataclass
class QueueConfig:
    """AWS SQS connection configuration."""
    region: str = "us-west-2"
    queue_url: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Create queue config from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", "us-west-2"),
            queue_url=os.getenv("AWS_SQS_QUEUE_URL") or None,
            endpoint_url=os.getenv("AWS_ENDPOINT_URL") or None,
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
        )

    def client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``boto3.client("sqs", ...)``."""
        kwargs: Dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if self.access_key_id:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        return kwargs


@dataclass
class ProcessorConfig:
    """Change processor configuration."""
    batch_size: int = 10
    retry_attempts: int = 3
    failure_threshold: int = 10
    create_collections: bool = False

    # Search collection names per document kind
    software_collection: str = "software_stack_components"
    claims_collection: str = "claims"
    locations_collection: str = "locations"

    @classmethod
    def from_env(cls) -> "ProcessorConfig":
        """Create processor config from environment variables."""
        return cls(
            batch_size=int(os.getenv("SYNC_BATCH_SIZE", "10")),
            retry_attempts=int(os.getenv("SYNC_RETRY_ATTEMPTS", "3")),
            failure_threshold=int(os.getenv("SYNC_FAILURE_THRESHOLD", "10")),
            create_collections=_env_bool("SYNC_CREATE_COLLECTIONS", "false"),
            software_collection=os.getenv("SOFTWARE_COLLECTION_NAME", "software_stack_components"),
            claims_collection=os.getenv("CLAIMS_COLLECTION_NAME", "claims"),
            locations_collection=os.getenv("LOCATIONS_COLLECTION_NAME", "locations"),
        )

    @property
    def collection_names(self) -> Dict[str, str]:
        """Collection name keyed by document kind value."""
        return {
            "software_stack": self.software_collection,
            "claims": self.claims_collection,
            "locations": self.locations_collection,
        }


@dataclass
class PollingConfig:
    """Queue polling configuration."""
    enabled: bool = True
    interval_ms: int = 5000
    max_messages: int = 10
    visibility_timeout_seconds: int = 300
    wait_time_seconds: int = 20  # long polling
    delete_success_ratio: float = 0.8

    @classmethod
    def from_env(cls) -> "PollingConfig":
        """Create polling config from environment variables."""
        return cls(
            enabled=_env_bool("SYNC_POLLING_ENABLED", "true"),
            interval_ms=int(os.getenv("SYNC_POLLING_INTERVAL", "5000")),
            max_messages=int(os.getenv("SYNC_MAX_MESSAGES", "10")),
            visibility_timeout_seconds=int(os.getenv("SYNC_VISIBILITY_TIMEOUT", "300")),
            wait_time_seconds=int(os.getenv("SYNC_WAIT_TIME", "20")),
            delete_success_ratio=float(os.getenv("SYNC_DELETE_SUCCESS_RATIO", "0.8")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    # File logging
    log_to_file: bool = False
    log_file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Structured logging (JSON)
    structured: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create logging config from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            date_format=os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S"),
            log_to_file=_env_bool("LOG_TO_FILE", "false"),
            log_file_path=os.getenv("LOG_FILE_PATH"),
            max_file_size=int(os.getenv("LOG_MAX_FILE_SIZE", str(10 * 1024 * 1024))),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
            structured=_env_bool("LOG_STRUCTURED", "false"),
        )


@dataclass
class MonitoringConfig:
    """Health and metrics endpoint configuration."""
    enabled: bool = True
    health_check_port: int = 8001
    prometheus_enabled: bool = True
    error_rate_threshold: float = 0.1
    health_cache_seconds: int = 5

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Create monitoring config from environment variables."""
        return cls(
            enabled=_env_bool("MONITORING_ENABLED", "true"),
            health_check_port=int(os.getenv("HEALTH_CHECK_PORT", "8001")),
            prometheus_enabled=_env_bool("PROMETHEUS_ENABLED", "true"),
            error_rate_threshold=float(os.getenv("SYNC_ERROR_RATE_THRESHOLD", "0.1")),
            health_cache_seconds=int(os.getenv("HEALTH_CACHE_SECONDS", "5")),
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    # Component configs
    aws: QueueConfig = field(default_factory=QueueConfig.from_env)
    processor: ProcessorConfig = field(default_factory=ProcessorConfig.from_env)
    polling: PollingConfig = field(default_factory=PollingConfig.from_env)
    logging: LoggingConfig = field(default_factory=LoggingConfig.from_env)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig.from_env)

    # Application settings
    app_name: str = "search-sync"
    version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create application config from environment variables."""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            environment = Environment.DEVELOPMENT

        return cls(
            environment=environment,
            debug=_env_bool("DEBUG", "false"),
            app_name=os.getenv("APP_NAME", "search-sync"),
            version=os.getenv("APP_VERSION", "1.0.0"),
        )

    @property
    def queue_enabled(self) -> bool:
        return bool(self.aws.queue_url)

    def validate(self) -> None:
        """Validate configuration values."""
        if self.processor.batch_size <= 0:
            raise ConfigurationError("Sync batch size must be positive")

        if self.processor.retry_attempts < 0:
            raise ConfigurationError("Retry attempts cannot be negative")

        if self.processor.failure_threshold <= 0:
            raise ConfigurationError("Processor failure threshold must be positive")

        if not 1 <= self.polling.max_messages <= 10:
            raise ConfigurationError("SQS max messages must be between 1 and 10")

        if not 0 <= self.polling.wait_time_seconds <= 20:
            raise ConfigurationError("SQS wait time must be between 0 and 20 seconds")

        if not 0 <= self.polling.visibility_timeout_seconds <= 43200:
            raise ConfigurationError("SQS visibility timeout must be between 0 and 43200 seconds")

        if self.polling.interval_ms < 0:
            raise ConfigurationError("Polling interval cannot be negative")

        if not 0.0 <= self.polling.delete_success_ratio <= 1.0:
            raise ConfigurationError("Delete success ratio must be between 0 and 1")

        if not 0.0 <= self.monitoring.error_rate_threshold <= 1.0:
            raise ConfigurationError("Error rate threshold must be between 0 and 1")

        if self.aws.queue_url and not self.aws.region:
            raise ConfigurationError("AWS region is required when a queue URL is configured")

        if self.aws.access_key_id and not self.aws.secret_access_key:
            raise ConfigurationError("AWS secret access key must accompany the access key id")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for logging/serialization."""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "app_name": self.app_name,
            "version": self.version,
            "aws": {
                "region": self.aws.region,
                "queue_url": self.aws.queue_url,
                "endpoint_url": self.aws.endpoint_url,
            },
            "processor": {
                "batch_size": self.processor.batch_size,
                "retry_attempts": self.processor.retry_attempts,
                "failure_threshold": self.processor.failure_threshold,
                "collections": self.processor.collection_names,
            },
            "polling": {
                "enabled": self.polling.enabled,
                "interval_ms": self.polling.interval_ms,
                "max_messages": self.polling.max_messages,
                "visibility_timeout_seconds": self.polling.visibility_timeout_seconds,
                "wait_time_seconds": self.polling.wait_time_seconds,
            },
        }


# Global configuration instance
config = AppConfig.from_env()

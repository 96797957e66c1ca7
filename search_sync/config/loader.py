"""
Configuration loader utilities.

Provides functions to load configuration from various sources:
- Environment variables (primary)
- Configuration files (YAML/JSON)
- Default values (fallback)
"""

import os
import json
import logging
import yaml
from dataclasses import fields
from pathlib import Path
from typing import Dict, Any, Optional

from .settings import (
    AppConfig,
    Environment,
    QueueConfig,
    ProcessorConfig,
    PollingConfig,
    LoggingConfig,
    MonitoringConfig,
)

logger = logging.getLogger(__name__)

SECTION_CLASSES = {
    "aws": QueueConfig,
    "processor": ProcessorConfig,
    "polling": PollingConfig,
    "logging": LoggingConfig,
    "monitoring": MonitoringConfig,
}

INT_FIELDS = {
    "batch_size", "retry_attempts", "failure_threshold",
    "interval_ms", "max_messages", "visibility_timeout_seconds", "wait_time_seconds",
    "max_file_size", "backup_count", "health_check_port", "health_cache_seconds",
}
BOOL_FIELDS = {
    "debug", "create_collections", "enabled", "log_to_file", "structured",
    "prometheus_enabled",
}
FLOAT_FIELDS = {"delete_success_ratio", "error_rate_threshold"}


class ConfigLoader:
    """Configuration loader with support for multiple sources."""

    env_mappings = {
        'ENVIRONMENT': 'environment',
        'DEBUG': 'debug',
        'APP_NAME': 'app_name',
        'APP_VERSION': 'version',
        # Queue settings
        'AWS_REGION': 'aws.region',
        'AWS_SQS_QUEUE_URL': 'aws.queue_url',
        'AWS_ENDPOINT_URL': 'aws.endpoint_url',
        'AWS_ACCESS_KEY_ID': 'aws.access_key_id',
        'AWS_SECRET_ACCESS_KEY': 'aws.secret_access_key',
        # Processor settings
        'SYNC_BATCH_SIZE': 'processor.batch_size',
        'SYNC_RETRY_ATTEMPTS': 'processor.retry_attempts',
        'SYNC_FAILURE_THRESHOLD': 'processor.failure_threshold',
        'SYNC_CREATE_COLLECTIONS': 'processor.create_collections',
        'SOFTWARE_COLLECTION_NAME': 'processor.software_collection',
        'CLAIMS_COLLECTION_NAME': 'processor.claims_collection',
        'LOCATIONS_COLLECTION_NAME': 'processor.locations_collection',
        # Polling settings
        'SYNC_POLLING_ENABLED': 'polling.enabled',
        'SYNC_POLLING_INTERVAL': 'polling.interval_ms',
        'SYNC_MAX_MESSAGES': 'polling.max_messages',
        'SYNC_VISIBILITY_TIMEOUT': 'polling.visibility_timeout_seconds',
        'SYNC_WAIT_TIME': 'polling.wait_time_seconds',
        'SYNC_DELETE_SUCCESS_RATIO': 'polling.delete_success_ratio',
        # Logging settings
        'LOG_LEVEL': 'logging.level',
        'LOG_FORMAT': 'logging.format',
        'LOG_DATE_FORMAT': 'logging.date_format',
        'LOG_TO_FILE': 'logging.log_to_file',
        'LOG_FILE_PATH': 'logging.log_file_path',
        'LOG_MAX_FILE_SIZE': 'logging.max_file_size',
        'LOG_BACKUP_COUNT': 'logging.backup_count',
        'LOG_STRUCTURED': 'logging.structured',
        # Monitoring settings
        'MONITORING_ENABLED': 'monitoring.enabled',
        'HEALTH_CHECK_PORT': 'monitoring.health_check_port',
        'PROMETHEUS_ENABLED': 'monitoring.prometheus_enabled',
        'SYNC_ERROR_RATE_THRESHOLD': 'monitoring.error_rate_threshold',
        'HEALTH_CACHE_SECONDS': 'monitoring.health_cache_seconds',
    }

    def __init__(self):
        self.config_paths = [
            Path.cwd() / "config" / "app.yaml",
            Path.cwd() / "config" / "app.json",
            Path.home() / ".search_sync" / "config.yaml",
            Path.home() / ".search_sync" / "config.json",
        ]

    def load_from_file(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """
        Load configuration from file.

        Args:
            config_path: Specific config file path, or None to try defaults

        Returns:
            Configuration dictionary from file, or empty dict if not found
        """
        if config_path:
            paths_to_try = [Path(config_path)]
        else:
            paths_to_try = self.config_paths

        for path in paths_to_try:
            if path.exists():
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        if path.suffix.lower() in ['.yaml', '.yml']:
                            return yaml.safe_load(f) or {}
                        elif path.suffix.lower() == '.json':
                            return json.load(f) or {}
                except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
                    logger.warning(f"Failed to load config from {path}: {e}")
                    continue

        return {}

    def merge_configs(self, file_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge file configuration with environment variables.

        Environment variables take precedence over file config.
        """
        merged = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in file_config.items()
        }

        for env_var, config_path in self.env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(merged, config_path, env_value)

        return merged

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a value in a nested dictionary using dot notation."""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._coerce(keys[-1], value)

    def _coerce(self, key: str, value: Any) -> Any:
        """Convert raw string values for known typed fields."""
        if not isinstance(value, str):
            return value
        if key in INT_FIELDS:
            try:
                return int(value)
            except ValueError:
                return value
        if key in FLOAT_FIELDS:
            try:
                return float(value)
            except ValueError:
                return value
        if key in BOOL_FIELDS:
            return value.lower() in ('true', '1', 'yes', 'on')
        if key in ('queue_url', 'endpoint_url') and not value:
            return None
        return value

    def build_config(self, data: Dict[str, Any]) -> AppConfig:
        """Build an AppConfig from a merged nested mapping."""
        sections = {}
        for name, section_cls in SECTION_CLASSES.items():
            values = data.get(name) or {}
            allowed = {f.name for f in fields(section_cls)}
            unknown = set(values) - allowed
            if unknown:
                logger.warning(f"Ignoring unknown {name} settings: {sorted(unknown)}")
            sections[name] = section_cls(**{
                key: self._coerce(key, value)
                for key, value in values.items()
                if key in allowed
            })

        try:
            environment = Environment(str(data.get("environment", "development")).lower())
        except ValueError:
            environment = Environment.DEVELOPMENT

        return AppConfig(
            environment=environment,
            debug=bool(self._coerce("debug", data.get("debug", False))),
            app_name=data.get("app_name", "search-sync"),
            version=str(data.get("version", "1.0.0")),
            **sections,
        )

    def load_config(self, config_path: Optional[Path] = None) -> AppConfig:
        """
        Load and create AppConfig from available sources.

        Args:
            config_path: Optional specific config file path

        Returns:
            Fully configured AppConfig instance
        """
        file_config = self.load_from_file(config_path)
        merged_config = self.merge_configs(file_config)
        return self.build_config(merged_config)


def load_configuration(config_path: Optional[Path] = None) -> AppConfig:
    """
    Convenience function to load application configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Configured AppConfig instance
    """
    loader = ConfigLoader()
    return loader.load_config(config_path)


# Example configuration file templates
DEFAULT_CONFIG_YAML = """
environment: development
debug: false

aws:
  region: us-west-2
  queue_url: http://localhost:4566/000000000000/search-sync-events
  endpoint_url: http://localhost:4566

processor:
  batch_size: 10
  retry_attempts: 3
  failure_threshold: 10
  create_collections: true

polling:
  enabled: true
  interval_ms: 5000
  max_messages: 10
  visibility_timeout_seconds: 300
  wait_time_seconds: 20
  delete_success_ratio: 0.8

logging:
  level: INFO
  structured: false

monitoring:
  enabled: true
  health_check_port: 8001
  error_rate_threshold: 0.1
"""

DEFAULT_CONFIG_JSON = json.dumps(yaml.safe_load(DEFAULT_CONFIG_YAML), indent=2)

"""
Configuration package for the search sync service.

This package provides centralized configuration management with:
- Environment variable support
- Configuration file loading (YAML/JSON)
- Type-safe configuration classes
- Validation utilities
"""

from .settings import (
    AppConfig,
    QueueConfig,
    ProcessorConfig,
    PollingConfig,
    LoggingConfig,
    MonitoringConfig,
    Environment,
    ConfigurationError,
    config as app_config
)

from .validator import (
    ConfigValidator,
    validate_configuration,
    get_validation_session
)

from .loader import (
    ConfigLoader,
    load_configuration,
    DEFAULT_CONFIG_YAML,
    DEFAULT_CONFIG_JSON
)

__all__ = [
    # Main configuration classes
    "AppConfig",
    "QueueConfig",
    "ProcessorConfig",
    "PollingConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "Environment",
    "ConfigurationError",

    # Global config instance
    "app_config",

    # Validation utilities
    "ConfigValidator",
    "validate_configuration",
    "get_validation_session",

    # Loading utilities
    "ConfigLoader",
    "load_configuration",
    "DEFAULT_CONFIG_YAML",
    "DEFAULT_CONFIG_JSON",
]

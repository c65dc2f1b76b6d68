"""Configuration management for jobmail."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import apply_environment_overrides, load_config
from .models import (
    AppConfig,
    EmbeddingConfig,
    EnrichmentConfig,
    ExtractionConfig,
    FilterConfig,
    HttpConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    PlatformRule,
    QueueSettings,
    QueuesConfig,
    ScanConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "load_environment_config",
    "apply_environment_overrides",
    # Configuration models
    "AppConfig",
    "QueuesConfig",
    "QueueSettings",
    "EmbeddingConfig",
    "FilterConfig",
    "ExtractionConfig",
    "EnrichmentConfig",
    "PlatformRule",
    "ScanConfig",
    "HttpConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]

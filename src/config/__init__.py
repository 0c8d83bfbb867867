"""
Configuration management for the monitoring system.

This module handles loading and validating configuration from YAML files.
All configuration values are validated using Pydantic models to ensure
type safety and catch configuration errors early.

The configuration system supports:
- Detection intervals and thresholds
- Circuit breaker and job policies
- Retention windows
- Client cache, subscription, logging and API settings

Configuration is loaded from YAML files in the config/ directory:
    - monitoring.yaml: Detection, scheduling and retention settings
    - features.yaml: Cache, subscriptions, logging and API settings

Environment variables can override connection settings:
    - REDIS_URL: Redis connection URL
    - DATABASE_URL: PostgreSQL connection URL
    - LOG_LEVEL: Application log level

Example:
    >>> from src.config import load_config, AppConfig
    >>> config = load_config()
    >>> config.monitoring.thresholds.consecutive_failure_threshold
    3

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from src.config.loader import ConfigLoadError, ConfigLoader, load_config
from src.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    # Monitoring config
    CircuitBreakerConfig,
    IntervalsConfig,
    JobConfig,
    JobsConfig,
    MonitoringConfig,
    PerformanceConfig,
    RetentionConfig,
    ThresholdsConfig,
    # Features config
    ApiConfig,
    CacheConfig,
    FeaturesConfig,
    LoggingConfig,
    SubscriptionConfig,
    # Connection config
    PostgresConnectionConfig,
    RedisConnectionConfig,
    # Root config
    AppConfig,
)

__all__ = [
    # Loader
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    # Enums
    "LogFormat",
    "LogLevel",
    # Monitoring config
    "IntervalsConfig",
    "ThresholdsConfig",
    "PerformanceConfig",
    "CircuitBreakerConfig",
    "RetentionConfig",
    "JobConfig",
    "JobsConfig",
    "MonitoringConfig",
    # Features config
    "CacheConfig",
    "SubscriptionConfig",
    "LoggingConfig",
    "ApiConfig",
    "FeaturesConfig",
    # Connection config
    "RedisConnectionConfig",
    "PostgresConnectionConfig",
    # Root config
    "AppConfig",
]

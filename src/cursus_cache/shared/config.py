"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for the Cursus cache service.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Key-value store connection settings
- Cache TTL and cleanup policy
- Monitoring thresholds
"""
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from enum import Enum


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheBackend(str, Enum):
    """Key-value store backends."""
    REDIS = "redis"
    MEMORY = "memory"


class RedisSettings(BaseSettings):
    """Redis configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    redis_url: str = Field("redis://localhost:6379", validation_alias="REDIS_URL")
    redis_db: int = Field(0, validation_alias="REDIS_DB")
    redis_max_connections: int = Field(20, validation_alias="REDIS_MAX_CONNECTIONS")
    redis_connect_timeout: float = Field(5.0, validation_alias="REDIS_CONNECT_TIMEOUT")
    redis_socket_timeout: float = Field(5.0, validation_alias="REDIS_SOCKET_TIMEOUT")

    # Reconnect policy
    redis_retry_attempts: int = Field(5, validation_alias="REDIS_RETRY_ATTEMPTS")
    redis_backoff_base: float = Field(0.05, validation_alias="REDIS_BACKOFF_BASE")
    redis_backoff_cap: float = Field(0.5, validation_alias="REDIS_BACKOFF_CAP")

    @field_validator("redis_max_connections")
    @classmethod
    def validate_max_connections(cls, v):
        if v < 1:
            raise ValueError("Max connections must be at least 1")
        return v

    @field_validator("redis_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v):
        if v < 0:
            raise ValueError("Retry attempts cannot be negative")
        return v


class CacheSettings(BaseSettings):
    """Cache behaviour settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    cache_backend: CacheBackend = Field(CacheBackend.REDIS, validation_alias="CACHE_BACKEND")
    cache_namespace: str = Field("cursus", validation_alias="CACHE_NAMESPACE")
    cache_default_ttl: int = Field(3600, validation_alias="CACHE_DEFAULT_TTL")

    # Scheduled cleanup policy
    session_max_idle_seconds: int = Field(24 * 60 * 60, validation_alias="CACHE_SESSION_MAX_IDLE")
    analysis_max_age_seconds: int = Field(60 * 60, validation_alias="CACHE_ANALYSIS_MAX_AGE")

    # In-memory logs
    invalidation_log_size: int = Field(500, validation_alias="CACHE_INVALIDATION_LOG_SIZE")

    @field_validator("cache_default_ttl")
    @classmethod
    def validate_default_ttl(cls, v):
        if v < 1:
            raise ValueError("Default TTL must be at least 1 second")
        return v

    @field_validator("cache_namespace")
    @classmethod
    def validate_namespace(cls, v):
        if ":" in v or "*" in v:
            raise ValueError("Namespace must not contain ':' or '*'")
        return v


class MonitoringSettings(BaseSettings):
    """Monitoring, alerting and logging configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    log_level: LogLevel = Field(LogLevel.INFO, validation_alias="LOG_LEVEL")

    # Hit rate floor, percent
    hit_rate_warning: float = Field(50.0, validation_alias="ALERT_HIT_RATE_WARNING")
    hit_rate_critical: float = Field(20.0, validation_alias="ALERT_HIT_RATE_CRITICAL")

    # Average latency ceiling, milliseconds
    latency_warning_ms: float = Field(100.0, validation_alias="ALERT_LATENCY_WARNING_MS")
    latency_critical_ms: float = Field(500.0, validation_alias="ALERT_LATENCY_CRITICAL_MS")

    # Error rate ceiling, percent
    error_rate_warning: float = Field(1.0, validation_alias="ALERT_ERROR_RATE_WARNING")
    error_rate_critical: float = Field(5.0, validation_alias="ALERT_ERROR_RATE_CRITICAL")

    min_requests: int = Field(10, validation_alias="ALERT_MIN_REQUESTS")
    alert_log_size: int = Field(100, validation_alias="ALERT_LOG_SIZE")

    @field_validator("hit_rate_warning", "hit_rate_critical", "error_rate_warning", "error_rate_critical")
    @classmethod
    def validate_percentage(cls, v):
        if not 0 <= v <= 100:
            raise ValueError("Percentage thresholds must be between 0 and 100")
        return v

    @field_validator("alert_log_size")
    @classmethod
    def validate_alert_log_size(cls, v):
        if v < 1:
            raise ValueError("Alert log size must be at least 1")
        return v


class APISettings(BaseSettings):
    """API configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    api_title: str = Field("Cursus Cache API", validation_alias="API_TITLE")
    api_description: str = Field(
        "Cache invalidation and monitoring for learning-path data",
        validation_alias="API_DESCRIPTION"
    )
    cors_origins: List[str] = Field(["*"], validation_alias="CORS_ORIGINS")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="allow", populate_by_name=True)

    environment: Environment = Field(Environment.DEVELOPMENT, validation_alias="ENVIRONMENT")
    debug: bool = Field(False, validation_alias="DEBUG")
    app_name: str = Field("Cursus Cache", validation_alias="APP_NAME")
    app_version: str = Field("1.0.0", validation_alias="APP_VERSION")

    # Component settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    api: APISettings = Field(default_factory=APISettings)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None


def get_redis_settings() -> RedisSettings:
    """Get Redis settings."""
    return get_settings().redis


def get_cache_settings() -> CacheSettings:
    """Get cache settings."""
    return get_settings().cache


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return get_settings().monitoring


def get_config_summary() -> dict:
    """
    Get a summary of the current configuration (without sensitive data).

    Returns:
        Dictionary with configuration summary
    """
    settings = get_settings()
    return {
        "environment": settings.environment.value,
        "debug": settings.debug,
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "cache": {
            "backend": settings.cache.cache_backend.value,
            "namespace": settings.cache.cache_namespace,
            "default_ttl": settings.cache.cache_default_ttl,
        },
        "monitoring": {
            "log_level": settings.monitoring.log_level.value,
            "hit_rate_warning": settings.monitoring.hit_rate_warning,
            "latency_warning_ms": settings.monitoring.latency_warning_ms,
            "error_rate_critical": settings.monitoring.error_rate_critical,
        },
    }

"""Configuration management for the recipe automation engine.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class RetryPolicyConfig(BaseModel):
    """Configuration for HTTP retry behaviour."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum number of attempts (including the first request)",
    )
    backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial delay in seconds before retrying",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the backoff delay after each failure",
    )
    max_backoff_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Maximum delay cap between retries",
    )


class HTTPClientConfig(BaseModel):
    """Defaults for the HTTP-based actions (api_request, webhook_call)."""

    timeout: float = Field(default=30.0, gt=0.0, description="Request timeout in seconds")
    retry: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(max_attempts=1),
        description="Transport-level retry policy applied inside a single action attempt",
    )


class EngineConfig(BaseModel):
    """Configuration for the automation engine execution loop."""

    max_concurrent_executions: int = Field(
        default=10, ge=1, description="Global cap on executions running at the same time"
    )
    tick_interval_seconds: float = Field(
        default=0.1, gt=0.0, description="Interval between execution loop ticks"
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0, ge=0.0, description="How long shutdown waits for active executions"
    )
    max_execution_history: int = Field(
        default=1000, ge=1, description="Maximum number of executions kept in history"
    )
    execution_retention_days: int = Field(
        default=30, ge=1, description="Days to retain finished executions"
    )
    global_variables: dict[str, Any] = Field(
        default_factory=dict, description="Values exposed through the global variable scope"
    )


class VariableResolverConfig(BaseModel):
    """Configuration for variable resolution."""

    throw_on_missing: bool = Field(
        default=False, description="Raise VariableNotFoundError for unresolved references"
    )
    default_values: dict[str, Any] = Field(
        default_factory=dict,
        description="Fallback values keyed by reference without the leading '$'",
    )
    cache_enabled: bool = Field(default=True, description="Cache resolved references")
    cache_ttl_seconds: float = Field(
        default=300.0, ge=0.0, description="Lifetime of cached references in seconds"
    )


class SchedulerConfig(BaseModel):
    """Configuration for the APScheduler-backed cron job manager."""

    enabled: bool = Field(default=True, description="Enable the cron job manager")
    timezone: str = Field(default="UTC", description="Default timezone for jobs")
    job_coalesce: bool = Field(default=True, description="Combine missed job runs")
    max_instances: int = Field(default=1, description="Max concurrent instances per job")
    misfire_grace_time: int = Field(default=60, description="Grace time for missed jobs (seconds)")
    max_history: int = Field(default=10000, description="Job execution results kept in memory")

    @field_validator("max_instances")
    @classmethod
    def validate_max_instances(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_instances must be at least 1")
        return value


class PersistenceConfig(BaseModel):
    """Configuration for the record store."""

    backend: str = Field(default="memory", description="Store backend (memory or sqlite)")
    path: str | None = Field(default=None, description="Path to the SQLite database file")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        if value not in ["memory", "sqlite"]:
            raise ValueError("backend must be 'memory' or 'sqlite'")
        return value


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")
    library_level: str = Field(
        default="WARNING", description="Minimum level for scheduler and HTTP client loggers"
    )

    @field_validator("level", "library_level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(_LOG_LEVELS)}")
        return upper


class AutomationConfig(BaseSettings):
    """Main configuration for the automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_AUTOMATION_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="production", description="Environment name exposed to executions"
    )
    engine: EngineConfig = Field(default_factory=EngineConfig)
    variables: VariableResolverConfig = Field(default_factory=VariableResolverConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    http: HTTPClientConfig = Field(default_factory=HTTPClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> AutomationConfig:
        """Load configuration from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_json(cls, path: str | Path) -> AutomationConfig:
        """Load configuration from a JSON file."""

        import json

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    def to_yaml(self, path: str | Path) -> None:
        """Write the configuration to a YAML file."""

        with open(path, "w", encoding="utf-8") as handle:
            yaml.safe_dump(self.model_dump(mode="json"), handle, sort_keys=False)


__all__ = [
    "AutomationConfig",
    "EngineConfig",
    "HTTPClientConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "RetryPolicyConfig",
    "SchedulerConfig",
    "VariableResolverConfig",
]

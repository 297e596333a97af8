"""
Configuration management for the Tasko service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEYS = frozenset({"jwt_secret", "api_key"})


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class AuthConfig(BaseModel):
    """Bearer token and password policy configuration."""

    model_config = ConfigDict(extra="forbid")
    jwt_secret: str = Field(min_length=1)
    token_ttl_seconds: int = Field(gt=0)
    min_password_length: int = Field(ge=1)


class PaymentsConfig(BaseModel):
    """Mock payment gateway configuration."""

    model_config = ConfigDict(extra="forbid")
    transaction_prefix: str


class TasksConfig(BaseModel):
    """Task marketplace tuning."""

    model_config = ConfigDict(extra="forbid")
    available_radius_km: float = Field(gt=0)
    max_available_results: int = Field(gt=0)
    commission_rate: float = Field(ge=0, le=1)
    max_comment_length: int = Field(gt=0)


class AdminConfig(BaseModel):
    """Administrative endpoint configuration."""

    model_config = ConfigDict(extra="forbid")
    api_key: str = Field(min_length=1)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    auth: AuthConfig
    payments: PaymentsConfig
    tasks: TasksConfig
    admin: AdminConfig
    request: RequestConfig


def get_config_path() -> Path:
    """
    Determine configuration file path.

    CONFIG_PATH wins when set; otherwise config.yaml in the working directory.
    """
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Read and validate a YAML configuration file."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process (cleared by clear_settings_cache)."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted

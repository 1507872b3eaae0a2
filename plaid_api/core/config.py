"""
Application Configuration Module

This module provides Pydantic-based configuration models for the API.
All configuration is validated and type-checked at load time.

Configuration Sections:
    - ApiConfig: API server settings (host, port)
    - RuntimeConfig: Execution environment and host capabilities
    - DatabaseConfig: Connection target, pool bounds, drift policy
    - ShutdownConfig: Graceful shutdown deadline
    - AppConfig: Root configuration container

Environment Variables (take priority over the config file):
    - CONFIG_PATH: Config file path (default: config.json, optional)
    - APP_ENV: development | production | test
    - HOST / PORT: API server binding
    - DATABASE_URL: Postgres connection string
    - SUPPORTS_PERSISTENT_SOCKETS: true/false, overrides detection
    - SHUTDOWN_DEADLINE_MS: Cleanup deadline in milliseconds
    - DB_DRIFT_POLICY: replace | fail_fast

Usage:
    from plaid_api.core.config import load_config

    config = load_config("config.json")
    print(config.api.host, config.api.port)
    print(config.database.effective_drift_policy(config.runtime))
"""

import os
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "config.json"

# Markers set by hosts that freeze or recycle the process between invocations
SERVERLESS_ENV_MARKERS = (
    "AWS_LAMBDA_FUNCTION_NAME",
    "FUNCTIONS_WORKER_RUNTIME",
)


class DriftPolicy(str, Enum):
    """What a resource cache does when the requested fingerprint changes."""

    REPLACE = "replace"
    FAIL_FAST = "fail_fast"


class ApiConfig(BaseModel):
    """
    API server configuration.

    Attributes:
        host: IP address to bind (0.0.0.0 for all interfaces)
        port: Port number (1024-65535)
    """

    host: str = Field(
        default="0.0.0.0",
        description="IP address for API server binding"
    )
    port: int = Field(
        default=3007,
        ge=1024,
        le=65535,
        description="Port for API server (1024-65535)"
    )


class RuntimeConfig(BaseModel):
    """
    Execution environment.

    `supports_persistent_sockets` is resolved once by resolve_capabilities()
    and never re-derived afterwards.
    """

    environment: str = Field(
        default="development",
        description="development, production or test"
    )
    supports_persistent_sockets: Optional[bool] = Field(
        default=None,
        description="Host keeps TCP sockets alive between requests (None = detect)"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Only the three known environments are accepted."""
        v = v.strip().lower()
        if v not in ("development", "production", "test"):
            raise ValueError(
                f"environment must be development, production or test, got '{v}'"
            )
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


class DatabaseConfig(BaseModel):
    """
    Database connection configuration.

    Attributes:
        url: postgres:// or postgresql:// connection string
        pool_min_size: Minimum pooled connections (pooled transport only)
        pool_max_size: Maximum pooled connections (pooled transport only)
        drift_policy: Explicit drift policy, or None for the deployment default
        http_timeout_sec: Per-call timeout of the stateless transport
    """

    url: str = Field(
        default="",
        description="Postgres connection string"
    )
    pool_min_size: int = Field(
        default=1,
        ge=0,
        le=50,
        description="Minimum pooled connections"
    )
    pool_max_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum pooled connections"
    )
    drift_policy: Optional[DriftPolicy] = Field(
        default=None,
        description="replace | fail_fast (None = decided by deployment mode)"
    )
    http_timeout_sec: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for stateless SQL-over-HTTP calls"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Accept empty (resolved later from env) or a postgres URL."""
        if v and not v.startswith(("postgres://", "postgresql://")):
            raise ValueError("database url must start with postgres:// or postgresql://")
        return v

    def effective_drift_policy(self, runtime: RuntimeConfig) -> DriftPolicy:
        """
        Drift policy for the connection resource.

        An explicit setting wins. Otherwise hosts without persistent
        sockets replace and long-lived processes fail fast.
        """
        if self.drift_policy is not None:
            return self.drift_policy
        if runtime.supports_persistent_sockets is False:
            return DriftPolicy.REPLACE
        return DriftPolicy.FAIL_FAST


class ShutdownConfig(BaseModel):
    """Graceful shutdown configuration."""

    deadline_ms: int = Field(
        default=5000,
        ge=100,
        le=120000,
        description="Time cleanup gets before the process is force-exited"
    )


class AppConfig(BaseModel):
    """
    Root application configuration.

    Attributes:
        api: API server configuration
        runtime: Environment and host capabilities
        database: Database configuration
        shutdown: Shutdown configuration
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    shutdown: ShutdownConfig = Field(default_factory=ShutdownConfig)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def resolve_capabilities(
    runtime: RuntimeConfig,
    environ: Optional[Dict[str, str]] = None
) -> RuntimeConfig:
    """
    Resolve the persistent-socket capability once.

    An explicit value wins. Otherwise serverless markers in the environment
    mean the host cannot keep sockets open between invocations.
    """
    if runtime.supports_persistent_sockets is not None:
        return runtime

    environ = os.environ if environ is None else environ
    serverless = any(environ.get(marker) for marker in SERVERLESS_ENV_MARKERS)

    logger.info(
        f"Runtime capability resolved: persistent_sockets={not serverless}"
    )
    return runtime.model_copy(
        update={"supports_persistent_sockets": not serverless}
    )


def _apply_env_overrides(data: Dict[str, Any], environ: Dict[str, str]) -> None:
    """Apply environment overrides onto raw config data in place."""
    api = data.setdefault("api", {})
    runtime = data.setdefault("runtime", {})
    database = data.setdefault("database", {})
    shutdown = data.setdefault("shutdown", {})

    if environ.get("HOST"):
        api["host"] = environ["HOST"]
    if environ.get("PORT"):
        api["port"] = environ["PORT"]
    if environ.get("APP_ENV"):
        runtime["environment"] = environ["APP_ENV"]
    if environ.get("SUPPORTS_PERSISTENT_SOCKETS"):
        runtime["supports_persistent_sockets"] = _parse_bool(
            environ["SUPPORTS_PERSISTENT_SOCKETS"]
        )
    if environ.get("DATABASE_URL"):
        database["url"] = environ["DATABASE_URL"]
    if environ.get("DB_DRIFT_POLICY"):
        database["drift_policy"] = environ["DB_DRIFT_POLICY"]
    if environ.get("SHUTDOWN_DEADLINE_MS"):
        shutdown["deadline_ms"] = environ["SHUTDOWN_DEADLINE_MS"]


def refresh_config(
    config: AppConfig,
    environ: Optional[Dict[str, str]] = None
) -> AppConfig:
    """
    Re-apply environment overrides onto an already loaded configuration.

    Rotated credentials and reused execution contexts show up here as a
    changed DATABASE_URL (or drift policy, environment). The runtime
    capability keeps the value resolved at load time.

    Raises:
        ConfigurationError: If the overridden values fail validation
    """
    environ = os.environ if environ is None else environ

    data = config.model_dump(mode="json")
    _apply_env_overrides(data, environ)
    data["runtime"]["supports_persistent_sockets"] = (
        config.runtime.supports_persistent_sockets
    )

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Config validation failed: {e}")


def load_config(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None
) -> AppConfig:
    """
    Load and validate configuration from JSON file and environment.

    Args:
        path: Path to config file. If None, uses CONFIG_PATH env var or
              'config.json'; a missing default file is not an error.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated AppConfig with runtime capabilities resolved

    Raises:
        ConfigurationError: If the file is unreadable, invalid JSON,
                            or validation fails
    """
    environ = dict(os.environ) if environ is None else environ

    explicit = path is not None or "CONFIG_PATH" in environ
    if path is None:
        path = environ.get("CONFIG_PATH", DEFAULT_CONFIG_PATH)

    data: Dict[str, Any] = {}
    config_file = Path(path)

    if config_file.is_file():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading config '{path}': {e}")
        logger.info(f"Configuration loaded from '{path}'")
    elif explicit:
        raise ConfigurationError(f"Config file not found: '{path}'")

    _apply_env_overrides(data, environ)

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Config validation failed: {e}")

    config.runtime = resolve_capabilities(config.runtime, environ)
    return config

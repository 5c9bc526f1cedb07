"""Configuration system for docflow."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments supported by docflow."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    stream: Literal["stdout", "stderr"] = Field(
        default="stderr", description="Stream receiving log lines"
    )
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "authorization"],
        description="Fields that should be redacted in logs",
    )


class MetricsSettings(BaseModel):
    """Prometheus metrics configuration."""

    port: int | None = Field(
        default=None, ge=1, le=65535, description="Expose metrics over HTTP on this port"
    )


class ObservabilitySettings(BaseModel):
    """Aggregate observability configuration."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


class StorageSettings(BaseModel):
    """Location of uploaded documents read by the analyzer."""

    root: Path = Field(default=Path("./storage/uploads"), description="Upload directory")
    extension: str = Field(default="pdf", min_length=1, description="Stored file extension")
    sample_pages: int = Field(
        default=3, ge=1, description="Pages inspected when detecting extractable text"
    )

    @model_validator(mode="after")
    def _normalise_extension(self) -> StorageSettings:
        self.extension = self.extension.lstrip(".")
        return self


class RetryBackoffSettings(BaseModel):
    """Exponential backoff applied between stage retry attempts."""

    initial_seconds: float = Field(default=0.0, ge=0.0)
    max_seconds: float = Field(default=30.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)


class OrchestrationSettings(BaseModel):
    """Executor sizing and retry behaviour."""

    max_workers: int = Field(default=10, ge=1, description="Concurrent stage invocations")
    backoff: RetryBackoffSettings = Field(default_factory=RetryBackoffSettings)


class AuditSettings(BaseModel):
    """Append-only audit event log configuration."""

    enabled: bool = True
    path: Path = Field(default=Path("workflow-events.jsonl"))


class DemoSettings(BaseModel):
    """Knobs for the bundled simulated pipelines."""

    step_delay_seconds: float = Field(
        default=0.0, ge=0.0, description="Sleep applied by simulated stages"
    )


class AppSettings(BaseSettings):
    """Top-level application settings."""

    environment: Environment = Environment.DEV
    service_name: str = "docflow"
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    demo: DemoSettings = Field(default_factory=DemoSettings)

    model_config = SettingsConfigDict(env_prefix="DF_", env_nested_delimiter="__")


ENVIRONMENT_DEFAULTS: Mapping[Environment, dict[str, Any]] = {
    Environment.DEV: {
        "observability": {"logging": {"level": "DEBUG"}},
    },
    Environment.STAGING: {
        "orchestration": {"backoff": {"initial_seconds": 1.0}},
    },
    Environment.PROD: {
        "orchestration": {"backoff": {"initial_seconds": 1.0, "max_seconds": 60.0}},
        "observability": {"metrics": {"port": 9108}},
    },
}


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            target[key] = _deep_update(dict(current), value)
        else:
            target[key] = value
    return target


def load_settings(environment: str | None = None) -> AppSettings:
    """Load application settings with environment specific defaults applied.

    Environment defaults sit underneath explicitly configured values, so a
    ``DF_*`` variable always wins over the profile for its environment.
    """
    env_value = (environment or os.getenv("DF_ENV", "dev")).lower()
    env = Environment(env_value)
    try:
        base_settings = AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err
    merged = _deep_update({}, ENVIRONMENT_DEFAULTS.get(env, {}))
    merged = _deep_update(merged, base_settings.model_dump(exclude_unset=True))
    merged["environment"] = env
    return AppSettings.model_validate(merged)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()


__all__ = [
    "AppSettings",
    "AuditSettings",
    "DemoSettings",
    "ENVIRONMENT_DEFAULTS",
    "Environment",
    "LoggingSettings",
    "MetricsSettings",
    "ObservabilitySettings",
    "OrchestrationSettings",
    "RetryBackoffSettings",
    "StorageSettings",
    "get_settings",
    "load_settings",
]

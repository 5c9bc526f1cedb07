"""Tests covering application settings and environment profiles."""

from __future__ import annotations

from pathlib import Path

import pytest

from docflow.config.settings import (
    ENVIRONMENT_DEFAULTS,
    Environment,
    StorageSettings,
    get_settings,
    load_settings,
)


def test_environment_enum_covers_supported_values() -> None:
    assert {env.value for env in Environment} == {"dev", "staging", "prod"}


def test_prod_profile_enables_backoff_and_metrics() -> None:
    settings = load_settings("prod")
    assert settings.environment is Environment.PROD
    assert settings.orchestration.backoff.initial_seconds == 1.0
    assert settings.orchestration.backoff.max_seconds == 60.0
    assert settings.observability.metrics.port == 9108
    assert ENVIRONMENT_DEFAULTS[Environment.DEV]["observability"]["logging"]["level"] == "DEBUG"


def test_explicit_environment_variables_override_profile(monkeypatch) -> None:
    monkeypatch.setenv("DF_ORCHESTRATION__BACKOFF__INITIAL_SECONDS", "0.25")
    monkeypatch.setenv("DF_ORCHESTRATION__MAX_WORKERS", "3")
    settings = load_settings("staging")
    assert settings.orchestration.backoff.initial_seconds == 0.25
    assert settings.orchestration.max_workers == 3


def test_env_selects_profile(monkeypatch) -> None:
    monkeypatch.setenv("DF_ENV", "staging")
    get_settings.cache_clear()
    assert get_settings().environment is Environment.STAGING
    assert get_settings() is get_settings()


def test_unknown_environment_is_rejected() -> None:
    with pytest.raises(ValueError):
        load_settings("qa")


def test_storage_settings_normalise_extension(tmp_path) -> None:
    settings = StorageSettings(root=tmp_path, extension=".pdf")
    assert settings.extension == "pdf"
    assert StorageSettings().root == Path("./storage/uploads")


def test_invalid_values_fail_loading(monkeypatch) -> None:
    monkeypatch.setenv("DF_ORCHESTRATION__MAX_WORKERS", "0")
    with pytest.raises(RuntimeError):
        load_settings()

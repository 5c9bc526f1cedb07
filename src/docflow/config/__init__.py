"""Lightweight configuration package exports."""

from __future__ import annotations

from .settings import (
    AppSettings,
    Environment,
    LoggingSettings,
    get_settings,
    load_settings,
)

__all__ = [
    "AppSettings",
    "Environment",
    "LoggingSettings",
    "get_settings",
    "load_settings",
]

"""Configuration package."""

from txgraph.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    GraphBuilderSettings,
    PatternSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "GraphBuilderSettings",
    "PatternSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]

"""Configuration package."""

from pocketledger.config.settings import (
    AppSettings,
    CloudinarySettings,
    DatabaseSettings,
    GeminiSettings,
    HeuristicSettings,
    HeuristicThresholds,
    Settings,
    TesseractSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "DatabaseSettings",
    "GeminiSettings",
    "HeuristicSettings",
    "HeuristicThresholds",
    "Settings",
    "TesseractSettings",
    "get_settings",
    "validate_all_settings",
]

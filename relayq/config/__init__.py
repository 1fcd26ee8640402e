"""Configuration package for runtime settings and logging setup."""

from .logging import config_setup_logging
from .settings import AppSettings, SettingsLoadError, config_load_database_url, config_load_settings

__all__ = [
    "AppSettings",
    "SettingsLoadError",
    "config_load_settings",
    "config_load_database_url",
    "config_setup_logging",
]

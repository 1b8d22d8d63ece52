"""Configuration module for presencesync."""

from .settings import (
    PlayerSettings,
    Settings,
    default_cache_dir,
    default_config_path,
    load_settings,
    to_snake_case,
)
from .store import ConfigStore

__all__ = [
    "ConfigStore",
    "PlayerSettings",
    "Settings",
    "default_cache_dir",
    "default_config_path",
    "load_settings",
    "to_snake_case",
]

"""Configuration module."""

from aibase.config.paths import DataPaths, get_data_paths
from aibase.config.settings import Settings, get_settings

__all__ = ["DataPaths", "Settings", "get_data_paths", "get_settings"]

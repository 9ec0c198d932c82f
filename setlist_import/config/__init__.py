"""Configuration module: exports Settings, load_config and build_provider_configs."""

from setlist_import.config.loader import build_provider_configs, load_config
from setlist_import.config.settings import Settings

__all__ = ["Settings", "build_provider_configs", "load_config"]

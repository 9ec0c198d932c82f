"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time

:func:`load_config` reads the YAML first, then deep-merges the values
:class:`Settings` resolved from the environment on top.
:func:`build_provider_configs` turns the ``providers`` section into typed
:class:`BatchConfig` objects for the batch optimizer.
"""

from pathlib import Path
from typing import Any

import yaml

from setlist_import.config.settings import Settings
from setlist_import.models.provider_config import DEFAULT_PROVIDER_CONFIGS, BatchConfig


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file yields
              an empty base layer.
        settings: Pre-built settings; a fresh ``Settings()`` when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "import": {
            "identity_timeout_ms": settings.identity_timeout_ms,
            "liveness_threshold": settings.liveness_threshold,
            "concurrency": {
                "albums": settings.album_concurrency,
                "venues": settings.venue_concurrency,
            },
            "batch_group_size": settings.batch_import_group_size,
            "recompute_trending": settings.recompute_trending,
        },
        "preseed": {"songs_per_setlist": settings.songs_per_setlist},
        "progress": {"queue_size": settings.progress_queue_size},
        "logging": {"level": settings.log_level},
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def build_provider_configs(config: dict[str, Any]) -> dict[str, BatchConfig]:
    """Return one :class:`BatchConfig` per provider.

    Providers present in ``config["providers"]`` are validated and overlaid
    on the built-in defaults; unknown providers are added as-is.
    """
    configs = dict(DEFAULT_PROVIDER_CONFIGS)
    for name, raw in (config.get("providers") or {}).items():
        base = configs.get(name, BatchConfig()).model_dump()
        _deep_merge(base, raw or {})
        configs[name] = BatchConfig.model_validate(base)
    return configs


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value

"""Configuration loading and validation for Pack Sentinel."""

from pack_sentinel.config.env import expand_env_vars
from pack_sentinel.config.loader import load_pack_config, validate_config
from pack_sentinel.config.schema import (
    DisclosureSettings,
    DispatchSettings,
    ManifestSettings,
    McpSettings,
    PackConfig,
    WatchSettings,
)
from pack_sentinel.config.watcher import ManifestWatcher, fingerprint

__all__ = [
    "DisclosureSettings",
    "DispatchSettings",
    "ManifestSettings",
    "ManifestWatcher",
    "McpSettings",
    "PackConfig",
    "WatchSettings",
    "expand_env_vars",
    "fingerprint",
    "load_pack_config",
    "validate_config",
]

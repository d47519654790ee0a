"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Layered merging (system -> user -> project -> environment)
- Config caching
- Conversion from dict to typed Config and WatchConfiguration
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from watchbatch.config.paths import get_config_paths
from watchbatch.config.schema import (
    DEFAULT_DEBOUNCE_INTERVAL,
    DEFAULT_SCAN_CONCURRENCY,
    DEFAULT_SUBSCRIPTION_NAME,
    Config,
    LoggingConfig,
    TransportConfig,
    WatchConfiguration,
    WatchSettings,
)
from watchbatch.errors import ConfigurationError

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("watchbatch.config")

_KNOWN_SECTIONS = {"watch", "transport", "logging"}

# Global cached config
_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}

    if not isinstance(data, dict):
        if data is not None:
            _log.warning("Ignoring %s: top level must be a mapping", path)
        return {}
    return data


def merge_layers(*layers: dict[str, Any]) -> dict[str, Any]:
    """Merge config layers; later layers win.

    Nested mappings merge key by key, lists and scalars are replaced
    wholesale, and a None value never replaces an existing one.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged = _merge_two(merged, layer)
    return merged


def _merge_two(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge_two(current, value)
        else:
            result[key] = value
    return result


def env_overrides() -> dict[str, Any]:
    """Build a config layer from environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("WATCHBATCH_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    sockname = os.environ.get("WATCHMAN_SOCK")
    if sockname:
        overrides.setdefault("transport", {})["sockname"] = sockname

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        _log.warning("Ignoring config section %r: expected a mapping", name)
        return {}
    return section


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    watch_data = _section(data, "watch")
    watch = WatchSettings(
        debounce_interval=watch_data.get("debounce_interval"),
        scan_concurrency=watch_data.get("scan_concurrency"),
        subscription_name=watch_data.get("subscription_name"),
    )

    transport_data = _section(data, "transport")
    transport = TransportConfig(
        binary=transport_data.get("binary", "watchman"),
        sockname=transport_data.get("sockname"),
        timeout=float(transport_data.get("timeout", 30.0)),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(watch=watch, transport=transport, logging=logging_config, extra=extra)


def load_config(root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<root>/.watchbatch/config.yaml)
    3. User config
    4. System config

    Args:
        root: Watch root for the project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(root):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            layers.append(layer)

    layers.append(env_overrides())

    config = dict_to_config(merge_layers(*layers))

    # Cache only the global (root-less) config
    if root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (useful for testing)."""
    global _cached_config
    _cached_config = None


def build_watch_configuration(
    root_path: str,
    config: Config | None = None,
    **overrides: Any,
) -> WatchConfiguration:
    """Build a validated WatchConfiguration for a root.

    Values come from ``overrides`` first, then the config file's ``watch``
    section, then built-in defaults.

    Raises:
        ConfigurationError: If root_path is empty or a value is invalid.
    """
    settings = (config or Config()).watch

    def pick(name: str, default: Any) -> Any:
        value = overrides.get(name)
        if value is None:
            value = getattr(settings, name)
        return default if value is None else value

    unknown = set(overrides) - {"debounce_interval", "scan_concurrency", "subscription_name"}
    if unknown:
        raise ConfigurationError(f"Unknown watch settings: {sorted(unknown)}")

    try:
        debounce = float(pick("debounce_interval", DEFAULT_DEBOUNCE_INTERVAL))
        concurrency = int(pick("scan_concurrency", DEFAULT_SCAN_CONCURRENCY))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid watch setting: {e}") from e

    return WatchConfiguration(
        root_path=root_path,
        debounce_interval=debounce,
        scan_concurrency=concurrency,
        subscription_name=str(pick("subscription_name", DEFAULT_SUBSCRIPTION_NAME)),
    )

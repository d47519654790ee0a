"""Configuration management for watchbatch.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/watchbatch/ or %PROGRAMDATA%)
- User-level config (~/.config/watchbatch/ or %APPDATA%)
- Project-level config (<root>/.watchbatch/)
- Environment variable overrides (highest priority)

Example usage:
    from watchbatch.config import load_config, build_watch_configuration

    config = load_config(root="/path/to/project")
    watch_config = build_watch_configuration("/path/to/project", config)
"""

from watchbatch.config.loader import (
    build_watch_configuration,
    get_config,
    load_config,
    merge_layers,
    reset_config,
)
from watchbatch.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from watchbatch.config.schema import (
    Config,
    LoggingConfig,
    TransportConfig,
    WatchConfiguration,
    WatchSettings,
)

__all__ = [
    # Main API
    "Config",
    "WatchConfiguration",
    "build_watch_configuration",
    "load_config",
    "get_config",
    "reset_config",
    "merge_layers",
    # Schema types
    "WatchSettings",
    "TransportConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]

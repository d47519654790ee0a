"""Configuration schema dataclasses for watchbatch.

Defines the structure of configuration at all levels (system, user, project).
File-level sections are all optional so partial configs merge together;
``WatchConfiguration`` is the validated, immutable settings of one watch
session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from watchbatch.errors import ConfigurationError

DEFAULT_DEBOUNCE_INTERVAL = 0.2
DEFAULT_SCAN_CONCURRENCY = 500
DEFAULT_SUBSCRIPTION_NAME = "watchbatch_subscription"


@dataclass(frozen=True)
class WatchConfiguration:
    """Settings for one watch session.

    Immutable for the lifetime of the session. Construction fails with
    ConfigurationError when ``root_path`` is empty or a numeric field is
    out of range.

    Attributes:
        root_path: Project root all watched paths live under.
        debounce_interval: Seconds of inactivity before a batch is emitted.
        scan_concurrency: Maximum number of baseline stats in flight.
        subscription_name: Name the transport subscription is registered as.
    """

    root_path: str
    debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL
    scan_concurrency: int = DEFAULT_SCAN_CONCURRENCY
    subscription_name: str = DEFAULT_SUBSCRIPTION_NAME

    def __post_init__(self) -> None:
        if not self.root_path:
            raise ConfigurationError("root_path is missing for watch configuration")
        if self.debounce_interval < 0:
            raise ConfigurationError(
                f"debounce_interval must be non-negative, got {self.debounce_interval!r}"
            )
        if self.scan_concurrency < 1:
            raise ConfigurationError(
                f"scan_concurrency must be positive, got {self.scan_concurrency!r}"
            )
        if not self.subscription_name:
            raise ConfigurationError("subscription_name must not be empty")


@dataclass
class WatchSettings:
    """Defaults for watch sessions read from config files.

    Example config.yaml:
        watch:
          debounce_interval: 0.2
          scan_concurrency: 500
    """

    debounce_interval: float | None = None  # Default: 0.2 seconds
    scan_concurrency: int | None = None  # Default: 500
    subscription_name: str | None = None  # Default: "watchbatch_subscription"


@dataclass
class TransportConfig:
    """Watchman transport configuration."""

    binary: str = "watchman"  # Executable used for get-sockname
    sockname: str | None = None  # Explicit socket path (skips get-sockname)
    timeout: float = 30.0  # Seconds to wait for a command response


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    watch: WatchSettings = field(default_factory=WatchSettings)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unrecognised top-level sections
    extra: dict[str, Any] = field(default_factory=dict)

"""watchbatch: debounced, batched file change notifications on top of Watchman."""

__version__ = "0.1.0"

# Public API
from watchbatch.config import Config, WatchConfiguration, build_watch_configuration, load_config
from watchbatch.errors import (
    ConfigurationError,
    FramingError,
    ScanError,
    StateError,
    TransportError,
    WatchbatchError,
)
from watchbatch.host import WatchFileSystem, Watching, WatchResult
from watchbatch.transport import WatchmanClient, WatchTransport
from watchbatch.watching import (
    AggregatedEvent,
    ChangeAggregator,
    ChangeEvent,
    RemovalEvent,
    SessionState,
)

__all__ = [
    # Main entry points
    "ChangeAggregator",
    "WatchFileSystem",
    "Watching",
    "WatchResult",
    # Events
    "AggregatedEvent",
    "ChangeEvent",
    "RemovalEvent",
    "SessionState",
    # Config
    "Config",
    "WatchConfiguration",
    "build_watch_configuration",
    "load_config",
    # Transport
    "WatchTransport",
    "WatchmanClient",
    # Errors
    "ConfigurationError",
    "FramingError",
    "ScanError",
    "StateError",
    "TransportError",
    "WatchbatchError",
]

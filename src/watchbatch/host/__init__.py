"""Adapters that plug the aggregator into host build tools."""

from watchbatch.host.filesystem import (
    InputFileSystem,
    WatchFileSystem,
    Watching,
    WatchResult,
)

__all__ = [
    "InputFileSystem",
    "WatchFileSystem",
    "Watching",
    "WatchResult",
]

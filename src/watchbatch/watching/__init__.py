"""Change aggregation for watchbatch.

Seeds known modification times with a baseline scan, applies live
notifications from a transport, and debounces them into settled batches.
"""

from watchbatch.watching.aggregator import ChangeAggregator, default_transport_factory
from watchbatch.watching.batch import PendingBatch
from watchbatch.watching.events import (
    AggregatedEvent,
    ChangeEvent,
    EventHub,
    EventKind,
    RemovalEvent,
)
from watchbatch.watching.resolution import RESOLUTION_LADDER, ResolutionEstimator
from watchbatch.watching.scan import ScanResult, baseline_scan, stat_mtime_ms
from watchbatch.watching.state import SessionState

__all__ = [
    "ChangeAggregator",
    "default_transport_factory",
    # Events
    "AggregatedEvent",
    "ChangeEvent",
    "EventHub",
    "EventKind",
    "RemovalEvent",
    # Building blocks
    "PendingBatch",
    "RESOLUTION_LADDER",
    "ResolutionEstimator",
    "ScanResult",
    "SessionState",
    "baseline_scan",
    "stat_mtime_ms",
]

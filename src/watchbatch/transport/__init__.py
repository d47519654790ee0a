"""Transport layer for watchbatch.

Provides the WatchTransport boundary, a Watchman JSON-protocol client and the
subscription adapter that turns notifications into per-file deliveries.
"""

from watchbatch.transport.client import WatchmanClient
from watchbatch.transport.protocol import PDU, SubscriptionFile, WatchTransport
from watchbatch.transport.subscription import SubscriptionAdapter

__all__ = [
    "PDU",
    "SubscriptionAdapter",
    "SubscriptionFile",
    "WatchTransport",
    "WatchmanClient",
]

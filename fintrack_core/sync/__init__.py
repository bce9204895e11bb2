"""Cross-tab cache coherence."""

from fintrack_core.sync.cross_tab import CrossTabSync, SyncListener
from fintrack_core.sync.transport import (
    BroadcastChannel,
    ChannelClosedError,
    LocalBroadcastChannel,
    LocalBroadcastHub,
    StorageArea,
    StorageConnection,
    StorageEvent,
)

__all__ = [
    "CrossTabSync",
    "SyncListener",
    # Transports
    "BroadcastChannel",
    "ChannelClosedError",
    "LocalBroadcastChannel",
    "LocalBroadcastHub",
    "StorageArea",
    "StorageConnection",
    "StorageEvent",
]

"""
Live Traffic Feed Module.

This module streams road situations (accidents, roadworks, congestion) from the
Trafikverket open data API over a websocket and delivers them, deduplicated by
identity, to an async consumer callback.

Components:
- ConnectionManager: Channel lifecycle, subscription handshake, reconnection
- SituationBuffer: Last-write-wins deduplication with periodic flush
- HeartbeatMonitor: Dead channel detection and connection quality
- ConnectivityProbe: One-shot credential/reachability check over HTTP
- codec: Subscription encoding and frame decoding

Usage:
    from trafficfeed.live import ConnectionManager, FeedConfig, SubscriptionConfig

    async def on_event(situation):
        print(situation.identity, situation.header)

    manager = ConnectionManager(FeedConfig(), auth_key=key)
    await manager.start(SubscriptionConfig(object_types=("Situation",), on_event=on_event))
"""

from trafficfeed.live.buffer import SituationBuffer
from trafficfeed.live.config import (
    BufferConfig,
    ConnectionConfig,
    FeedConfig,
    HeartbeatConfig,
    ReconnectPolicy,
    SubscriptionConfig,
)
from trafficfeed.live.connection import ConnectionManager, describe_close
from trafficfeed.live.diagnostics import ConnectivityProbe, ProbeOutcome, ProbeResult
from trafficfeed.live.errors import (
    ConfigurationError,
    ConnectionError,
    MessageParseError,
    SubscriptionError,
    TrafficFeedError,
)
from trafficfeed.live.health import HeartbeatMonitor, classify_quality
from trafficfeed.live.types import (
    ConnectionQuality,
    ConnectionState,
    FeedStats,
    GeoPoint,
    Severity,
    Situation,
)

__all__ = [
    # Main entry point
    "ConnectionManager",
    "ConnectivityProbe",
    # Configuration
    "FeedConfig",
    "ConnectionConfig",
    "HeartbeatConfig",
    "BufferConfig",
    "ReconnectPolicy",
    "SubscriptionConfig",
    # Components
    "SituationBuffer",
    "HeartbeatMonitor",
    "classify_quality",
    "describe_close",
    # Types
    "ConnectionState",
    "ConnectionQuality",
    "FeedStats",
    "GeoPoint",
    "Severity",
    "Situation",
    "ProbeOutcome",
    "ProbeResult",
    # Errors
    "TrafficFeedError",
    "ConnectionError",
    "SubscriptionError",
    "MessageParseError",
    "ConfigurationError",
]

"""
Shared types, enums, and data structures for the live traffic feed client.

This module contains types that are used across multiple components
of the streaming client (codec, buffer, heartbeat, connection manager).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional, Union


class ConnectionState(str, Enum):
    """State machine for the streaming connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"  # Subscription sent, awaiting ack
    STREAMING = "streaming"
    CLOSING = "closing"
    RECONNECT_WAITING = "reconnect_waiting"
    STOPPED = "stopped"


class ConnectionQuality(str, Enum):
    """Coarse classification derived from the age of the last inbound frame."""

    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    DISCONNECTED = "disconnected"


class Severity(IntEnum):
    """Ordered severity reported by the feed."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    VERY_HIGH = 4

    @classmethod
    def parse(cls, value: Any) -> Optional[Severity]:
        """
        Parse a feed severity label.

        Accepts the JSON feed labels (Low, Medium, High, VeryHigh) and the
        DATEX II spellings (lowest, highest). Unknown labels return None.
        """
        if value is None:
            return None
        key = str(value).strip().lower().replace("_", "").replace(" ", "")
        return _SEVERITY_LABELS.get(key)

    @property
    def label(self) -> str:
        """Feed spelling of the severity."""
        return _SEVERITY_NAMES[self]


_SEVERITY_LABELS: dict[str, Severity] = {
    "lowest": Severity.LOW,
    "low": Severity.LOW,
    "medium": Severity.MEDIUM,
    "high": Severity.HIGH,
    "highest": Severity.VERY_HIGH,
    "veryhigh": Severity.VERY_HIGH,
}

_SEVERITY_NAMES: dict[Severity, str] = {
    Severity.LOW: "Low",
    Severity.MEDIUM: "Medium",
    Severity.HIGH: "High",
    Severity.VERY_HIGH: "VeryHigh",
}


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A single WGS84 point."""

    longitude: float
    latitude: float


@dataclass(frozen=True, slots=True)
class Situation:
    """
    One upstream traffic event, normalized from the first Deviation of a
    feed Situation record.

    `identity` is the feed-assigned Deviation Id, or the CreationTime string
    when the feed issues no id. It is the deduplication key.
    """

    identity: str
    header: str
    message: str
    geometry: GeoPoint
    severity: Optional[Severity] = None
    icon_id: Optional[str] = None
    road_number: Optional[str] = None
    location_descriptor: Optional[str] = None
    county_codes: tuple[str, ...] = ()
    creation_time: Optional[datetime] = None
    start_time: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-friendly representation."""
        return {
            "identity": self.identity,
            "header": self.header,
            "message": self.message,
            "severity": self.severity.label if self.severity else None,
            "icon_id": self.icon_id,
            "longitude": self.geometry.longitude,
            "latitude": self.geometry.latitude,
            "road_number": self.road_number,
            "location_descriptor": self.location_descriptor,
            "county_codes": list(self.county_codes),
            "creation_time": self.creation_time.isoformat() if self.creation_time else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
        }


# --- Decoded frames ---


@dataclass(frozen=True, slots=True)
class SubscriptionAck:
    """Feed acknowledged the subscription request."""

    message: str = ""


@dataclass(frozen=True, slots=True)
class FeedErrorRecord:
    """Feed rejected the request with an error payload."""

    payload: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        """Human-readable description for on_error."""
        message = self.payload.get("MESSAGE") or self.payload.get("message")
        source = self.payload.get("SOURCE") or self.payload.get("source")
        if message and source:
            return f"API Error: {message} (source={source})"
        if message:
            return f"API Error: {message}"
        return f"API Error: {self.payload}"


@dataclass(frozen=True, slots=True)
class SituationBatch:
    """Zero or more decoded Situations from one data frame."""

    situations: tuple[Situation, ...] = ()
    rejected: int = 0  # Records dropped for missing identity or bad geometry


DecodedFrame = Union[SubscriptionAck, FeedErrorRecord, SituationBatch]


@dataclass(frozen=True)
class FeedStats:
    """Read-only snapshot of the connection manager's counters and state."""

    reconnect_attempts: int
    last_message_time: Optional[datetime]
    quality: ConnectionQuality
    connected: bool
    buffered_count: int
    last_error: Optional[str]
    state: ConnectionState = ConnectionState.IDLE
    messages_received: int = 0
    frames_dropped: int = 0
    situations_rejected: int = 0

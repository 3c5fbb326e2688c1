"""
Configuration types for the live traffic feed client.

Provides immutable, validated configuration dataclasses for all client components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from trafficfeed.live.errors import ConfigurationError
from trafficfeed.live.types import Situation

# Trafikverket open data endpoints
DEFAULT_STREAM_URL = "wss://api.trafikinfo.trafikverket.se/v2/data.json"
DEFAULT_REST_URL = "https://api.trafikinfo.trafikverket.se/v2/data.json"

DEFAULT_SCHEMA_VERSION = "1.5"
DEFAULT_RESULT_LIMIT = 100


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff between reconnection attempts."""

    base_delay_s: float = 3.0
    multiplier: float = 1.5
    max_delay_s: float = 30.0
    max_attempts: int = 10

    def __post_init__(self) -> None:
        if self.base_delay_s < 0:
            raise ConfigurationError(
                "base_delay_s must be non-negative",
                field="base_delay_s",
                value=self.base_delay_s,
            )
        if self.multiplier < 1:
            raise ConfigurationError(
                "multiplier must be >= 1",
                field="multiplier",
                value=self.multiplier,
            )
        if self.max_delay_s < self.base_delay_s:
            raise ConfigurationError(
                "max_delay_s must be >= base_delay_s",
                field="max_delay_s",
                value=self.max_delay_s,
            )
        if self.max_attempts < 1:
            raise ConfigurationError(
                "max_attempts must be positive",
                field="max_attempts",
                value=self.max_attempts,
            )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (1-based)."""
        if attempt < 1:
            return 0.0
        delay = self.base_delay_s * self.multiplier ** (attempt - 1)
        return float(min(delay, self.max_delay_s))

    def is_exhausted(self, attempts: int) -> bool:
        """Check whether `attempts` consecutive failures use up the budget."""
        return attempts >= self.max_attempts


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration for the streaming channel."""

    stream_url: str = DEFAULT_STREAM_URL
    rest_url: str = DEFAULT_REST_URL

    # Connection behavior
    connect_timeout_s: float = 30.0
    probe_timeout_s: float = 15.0
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)

    def __post_init__(self) -> None:
        if not self.stream_url:
            raise ConfigurationError("stream_url must be set", field="stream_url")
        if not self.rest_url:
            raise ConfigurationError("rest_url must be set", field="rest_url")
        if self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )
        if self.probe_timeout_s <= 0:
            raise ConfigurationError(
                "probe_timeout_s must be positive",
                field="probe_timeout_s",
                value=self.probe_timeout_s,
            )


@dataclass(frozen=True)
class HeartbeatConfig:
    """Configuration for liveness monitoring."""

    check_interval_s: float = 10.0
    poor_after_s: float = 60.0  # Report quality downgrade after this much silence
    dead_after_s: float = 120.0  # Force reconnect after this much silence

    def __post_init__(self) -> None:
        if self.check_interval_s <= 0:
            raise ConfigurationError(
                "check_interval_s must be positive",
                field="check_interval_s",
                value=self.check_interval_s,
            )
        if self.dead_after_s <= self.poor_after_s:
            raise ConfigurationError(
                "dead_after_s must be greater than poor_after_s",
                field="dead_after_s",
                value=self.dead_after_s,
            )


@dataclass(frozen=True)
class BufferConfig:
    """Configuration for the deduplicating message buffer."""

    flush_interval_s: float = 2.0
    max_pending: int = 50  # Drain immediately once more identities than this are pending

    def __post_init__(self) -> None:
        if self.flush_interval_s <= 0:
            raise ConfigurationError(
                "flush_interval_s must be positive",
                field="flush_interval_s",
                value=self.flush_interval_s,
            )
        if self.max_pending <= 0:
            raise ConfigurationError(
                "max_pending must be positive",
                field="max_pending",
                value=self.max_pending,
            )


@dataclass(frozen=True)
class FeedConfig:
    """
    Immutable top-level configuration for the streaming client.

    Example:
        config = FeedConfig(
            connection=ConnectionConfig(connect_timeout_s=10.0),
            buffer=BufferConfig(flush_interval_s=1.0),
        )
    """

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)


@dataclass(frozen=True)
class SubscriptionConfig:
    """
    What to subscribe to, and where to deliver it.

    Callbacks are awaited from the client's serialized context; they must not
    block the event loop.
    """

    object_types: tuple[str, ...]
    on_event: Callable[[Situation], Awaitable[None]]
    on_connect: Optional[Callable[[], Awaitable[None]]] = None
    on_disconnect: Optional[Callable[[], Awaitable[None]]] = None
    on_error: Optional[Callable[[str], Awaitable[None]]] = None
    schema_version: str = DEFAULT_SCHEMA_VERSION
    result_limit: int = DEFAULT_RESULT_LIMIT

    def __post_init__(self) -> None:
        if isinstance(self.object_types, str):
            object.__setattr__(self, "object_types", (self.object_types,))
        else:
            object.__setattr__(self, "object_types", tuple(self.object_types))

        if not self.object_types or not all(self.object_types):
            raise ConfigurationError(
                "At least one non-empty object type must be configured",
                field="object_types",
                value=self.object_types,
            )
        if not self.schema_version:
            raise ConfigurationError("schema_version must be set", field="schema_version")
        if self.result_limit <= 0:
            raise ConfigurationError(
                "result_limit must be positive",
                field="result_limit",
                value=self.result_limit,
            )

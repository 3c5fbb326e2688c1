"""
Purpose:
    - Loads a TOML config file for the feed client
    - Validates it (unknown keys rejected) and converts it into FeedConfig

Example file:

    [connection]
    stream_url = "wss://api.trafikinfo.trafikverket.se/v2/data.json"
    connect_timeout_s = 10

    [connection.reconnect]
    max_attempts = 5

    [subscription]
    object_types = ["Situation"]

    [filter]
    counties = ["01"]
    min_severity = "High"
"""

import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from trafficfeed.live.config import (
    DEFAULT_REST_URL,
    DEFAULT_RESULT_LIMIT,
    DEFAULT_SCHEMA_VERSION,
    DEFAULT_STREAM_URL,
    BufferConfig,
    ConnectionConfig,
    FeedConfig,
    HeartbeatConfig,
    ReconnectPolicy,
)
from trafficfeed.live.errors import ConfigurationError


class ReconnectSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_delay_s: float = Field(default=3.0, ge=0, description="delay before the first retry")
    multiplier: float = Field(default=1.5, ge=1, description="growth factor per attempt")
    max_delay_s: float = Field(default=30.0, ge=0, description="delay cap")
    max_attempts: int = Field(default=10, ge=1, description="consecutive failures before giving up")


class ConnectionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    stream_url: str = Field(default=DEFAULT_STREAM_URL, min_length=1)
    rest_url: str = Field(default=DEFAULT_REST_URL, min_length=1)
    connect_timeout_s: float = Field(default=30.0, gt=0)
    probe_timeout_s: float = Field(default=15.0, gt=0)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)


class HeartbeatSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    check_interval_s: float = Field(default=10.0, gt=0)
    poor_after_s: float = Field(default=60.0, ge=0)
    dead_after_s: float = Field(default=120.0, gt=0)


class BufferSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    flush_interval_s: float = Field(default=2.0, gt=0)
    max_pending: int = Field(default=50, gt=0)


class SubscriptionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    object_types: list[str] = Field(default=["Situation"], min_length=1)
    schema_version: str = Field(default=DEFAULT_SCHEMA_VERSION, min_length=1)
    result_limit: int = Field(default=DEFAULT_RESULT_LIMIT, gt=0)


class FilterSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    counties: list[str] = Field(default_factory=list, description="two-digit county codes")
    road_numbers: list[str] = Field(default_factory=list)
    municipalities: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list, description="accident/roadwork/congestion/other")
    min_severity: Optional[str] = None


class FeedSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)
    buffer: BufferSettings = Field(default_factory=BufferSettings)
    subscription: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    filter: FilterSettings = Field(default_factory=FilterSettings)

    def to_feed_config(self) -> FeedConfig:
        """Build the immutable runtime config. Cross-field checks happen here."""
        conn = self.connection
        return FeedConfig(
            connection=ConnectionConfig(
                stream_url=conn.stream_url,
                rest_url=conn.rest_url,
                connect_timeout_s=conn.connect_timeout_s,
                probe_timeout_s=conn.probe_timeout_s,
                reconnect=ReconnectPolicy(**conn.reconnect.model_dump()),
            ),
            heartbeat=HeartbeatConfig(**self.heartbeat.model_dump()),
            buffer=BufferConfig(**self.buffer.model_dump()),
        )


class ConfigLoader:
    """
    Config-loader; loading toml file.
    """

    def __init__(self, base_dir: str = ".") -> None:
        self._base_dir = base_dir

    def load(self, file_name: str) -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = Path(self._base_dir) / file_name

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            try:
                return tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {path}: {e}", value=str(path)) from e

    def load_settings(self, file_name: Optional[str] = None) -> FeedSettings:
        """Validated settings; defaults only when no file is given."""
        data = self.load(file_name) if file_name else {}
        return self.parse(data)

    def load_feed_config(self, file_name: Optional[str] = None) -> FeedConfig:
        return self.load_settings(file_name).to_feed_config()

    @staticmethod
    def parse(data: dict[str, Any]) -> FeedSettings:
        try:
            return FeedSettings.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(
                f"Invalid config: {location}: {first['msg']}",
                field=location,
                value=first.get("input"),
            ) from e

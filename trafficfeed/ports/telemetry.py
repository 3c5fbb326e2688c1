"""Telemetry Port Interface.

Contract: Log structured connection and delivery events, one call per event.
"""
from __future__ import annotations
from typing import Protocol, Any

class Telemetry(Protocol):
    def log(self, event: str, **fields: Any) -> None: ...

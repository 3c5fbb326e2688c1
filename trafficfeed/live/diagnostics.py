"""
One-shot connectivity probe against the feed's REST query endpoint.

Distinguishes "the key is wrong" from "the network is down" without
touching the live streaming channel.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import aiohttp
import orjson

from trafficfeed.live.codec import SITUATION_OBJECT_TYPE, encode_subscription
from trafficfeed.live.config import DEFAULT_SCHEMA_VERSION, ConnectionConfig

logger = logging.getLogger(__name__)


class ProbeOutcome(str, Enum):
    """Classification of a probe exchange."""

    OK = "ok"
    AUTH_FAILURE = "auth_failure"
    TRANSPORT_FAILURE = "transport_failure"
    UNEXPECTED_RESPONSE = "unexpected_response"


@dataclass(frozen=True)
class ProbeResult:
    """Result of a single connectivity probe."""

    outcome: ProbeOutcome
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == ProbeOutcome.OK


class ConnectivityProbe:
    """
    Performs a single POST of the subscription envelope with limit=1.

    Safe to call regardless of the connection manager's state; it opens its
    own HTTP session unless one is supplied.

    Usage:
        probe = ConnectivityProbe(ConnectionConfig(), auth_key=key)
        result = await probe.test_connection()
        print(result.outcome, result.message)
    """

    def __init__(
        self,
        config: ConnectionConfig,
        auth_key: Optional[str],
        session: Optional[aiohttp.ClientSession] = None,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> None:
        self._config = config
        self._auth_key = auth_key
        self._session = session
        self._schema_version = schema_version

    async def test_connection(self) -> ProbeResult:
        """Run the probe and classify the outcome."""
        if not self._auth_key:
            return ProbeResult(
                outcome=ProbeOutcome.AUTH_FAILURE,
                message="No authentication key configured",
                details={"auth_key": "missing"},
            )

        body = encode_subscription(
            self._auth_key,
            [SITUATION_OBJECT_TYPE],
            self._schema_version,
            limit=1,
        )

        logger.info(f"Probing feed endpoint {self._config.rest_url}")
        try:
            if self._session is not None:
                status, data = await self._post(self._session, body)
            else:
                timeout = aiohttp.ClientTimeout(total=self._config.probe_timeout_s)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    status, data = await self._post(session, body)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Probe transport failure: {e!r}")
            return ProbeResult(
                outcome=ProbeOutcome.TRANSPORT_FAILURE,
                message=f"Failed to reach feed endpoint: {e or type(e).__name__}",
                details={"error": str(e), "error_type": type(e).__name__},
            )

        return self._classify(status, data)

    async def _post(self, session: aiohttp.ClientSession, body: bytes) -> tuple[int, Any]:
        async with session.post(
            self._config.rest_url,
            data=body,
            headers={"Content-Type": "application/json"},
        ) as response:
            raw = await response.read()
            try:
                data = orjson.loads(raw) if raw else None
            except orjson.JSONDecodeError:
                data = None
            return response.status, data

    def _classify(self, status: int, data: Any) -> ProbeResult:
        results = None
        if isinstance(data, dict) and isinstance(data.get("RESPONSE"), dict):
            results = data["RESPONSE"].get("RESULT")

        first = results[0] if isinstance(results, list) and results else None

        if isinstance(first, dict) and first.get("ERROR"):
            error = first["ERROR"]
            logger.warning(f"Probe rejected by feed (HTTP {status}): {error}")
            return ProbeResult(
                outcome=ProbeOutcome.AUTH_FAILURE,
                message=f"Feed rejected the request: {_error_message(error)}",
                details={"status": status, "error": error},
            )

        if isinstance(first, dict) and isinstance(first.get(SITUATION_OBJECT_TYPE), list):
            count = len(first[SITUATION_OBJECT_TYPE])
            logger.info(f"Probe succeeded (HTTP {status}, {count} situations)")
            return ProbeResult(
                outcome=ProbeOutcome.OK,
                message=f"Feed reachable, {count} situations returned",
                details={"status": status, "situation_count": count},
            )

        if status in (401, 403):
            return ProbeResult(
                outcome=ProbeOutcome.AUTH_FAILURE,
                message=f"Feed refused credentials (HTTP {status})",
                details={"status": status},
            )

        logger.warning(f"Probe got unexpected response (HTTP {status})")
        return ProbeResult(
            outcome=ProbeOutcome.UNEXPECTED_RESPONSE,
            message=f"Unexpected response format (HTTP {status})",
            details={"status": status},
        )


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("MESSAGE") or error.get("message") or error)
    return str(error)

"""
Unit tests for ConnectivityProbe.
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import orjson
import pytest

from trafficfeed.live.config import ConnectionConfig
from trafficfeed.live.diagnostics import ConnectivityProbe, ProbeOutcome


def make_session(status: int = 200, body: object = None, raw: bytes | None = None) -> MagicMock:
    """Mock aiohttp session whose post() works as an async context manager."""
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=raw if raw is not None else orjson.dumps(body))

    session = MagicMock()
    session.post.return_value.__aenter__ = AsyncMock(return_value=response)
    session.post.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


class TestConnectivityProbe:
    """Tests for outcome classification."""

    @pytest.fixture
    def config(self) -> ConnectionConfig:
        return ConnectionConfig(rest_url="https://feed.example/v2/data.json")

    @pytest.mark.asyncio
    async def test_ok_reports_count(self, config: ConnectionConfig) -> None:
        body = {"RESPONSE": {"RESULT": [{"Situation": [{"Deviation": []}]}]}}
        session = make_session(body=body)
        probe = ConnectivityProbe(config, auth_key="key", session=session)

        result = await probe.test_connection()

        assert result.success
        assert result.outcome == ProbeOutcome.OK
        assert result.message == "Feed reachable, 1 situations returned"
        assert result.details["situation_count"] == 1

    @pytest.mark.asyncio
    async def test_request_uses_limit_one(self, config: ConnectionConfig) -> None:
        session = make_session(body={"RESPONSE": {"RESULT": [{"Situation": []}]}})
        probe = ConnectivityProbe(config, auth_key="key", session=session)

        await probe.test_connection()

        args, kwargs = session.post.call_args
        assert args[0] == "https://feed.example/v2/data.json"
        request = orjson.loads(kwargs["data"])["REQUEST"]
        assert request["LOGIN"]["authenticationkey"] == "key"
        assert request["QUERY"] == [{"objecttype": "Situation", "schemaversion": "1.5", "limit": 1}]

    @pytest.mark.asyncio
    async def test_error_payload_is_auth_failure(self, config: ConnectionConfig) -> None:
        body = {"RESPONSE": {"RESULT": [{"ERROR": {"SOURCE": "Authentication", "MESSAGE": "Invalid key"}}]}}
        probe = ConnectivityProbe(config, auth_key="bad", session=make_session(status=401, body=body))

        result = await probe.test_connection()

        assert result.outcome == ProbeOutcome.AUTH_FAILURE
        assert "Invalid key" in result.message
        assert not result.success

    @pytest.mark.asyncio
    async def test_forbidden_without_payload(self, config: ConnectionConfig) -> None:
        probe = ConnectivityProbe(config, auth_key="bad", session=make_session(status=403, raw=b""))

        result = await probe.test_connection()

        assert result.outcome == ProbeOutcome.AUTH_FAILURE

    @pytest.mark.asyncio
    async def test_missing_key_makes_no_request(self, config: ConnectionConfig) -> None:
        session = make_session()
        probe = ConnectivityProbe(config, auth_key=None, session=session)

        result = await probe.test_connection()

        assert result.outcome == ProbeOutcome.AUTH_FAILURE
        assert result.message == "No authentication key configured"
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure(self, config: ConnectionConfig) -> None:
        session = MagicMock()
        session.post.side_effect = aiohttp.ClientConnectionError("Cannot connect to host")
        probe = ConnectivityProbe(config, auth_key="key", session=session)

        result = await probe.test_connection()

        assert result.outcome == ProbeOutcome.TRANSPORT_FAILURE
        assert "Cannot connect to host" in result.message

    @pytest.mark.asyncio
    async def test_unexpected_response(self, config: ConnectionConfig) -> None:
        probe = ConnectivityProbe(
            config, auth_key="key", session=make_session(status=502, raw=b"<html>Bad gateway</html>")
        )

        result = await probe.test_connection()

        assert result.outcome == ProbeOutcome.UNEXPECTED_RESPONSE
        assert result.details["status"] == 502

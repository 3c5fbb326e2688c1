"""
Unit tests for SituationBuffer.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from trafficfeed.live.buffer import SituationBuffer
from trafficfeed.live.config import BufferConfig
from trafficfeed.live.types import GeoPoint, Situation


def make_situation(identity: str, header: str = "Vägarbete") -> Situation:
    return Situation(
        identity=identity,
        header=header,
        message="",
        geometry=GeoPoint(longitude=18.07, latitude=59.33),
    )


class TestDeduplication:
    """Tests for last-write-wins collapsing."""

    @pytest.mark.asyncio
    async def test_same_identity_delivered_once_with_latest_content(self) -> None:
        on_flush = AsyncMock()
        buffer = SituationBuffer(BufferConfig(), on_flush)

        for i in range(5):
            buffer.add(make_situation("X-1", header=f"update {i}"))

        assert buffer.pending_count == 1
        delivered = await buffer.flush()

        assert delivered == 1
        on_flush.assert_awaited_once()
        assert on_flush.await_args.args[0].header == "update 4"
        assert len(buffer) == 0

    @pytest.mark.asyncio
    async def test_distinct_identities_each_delivered(self) -> None:
        on_flush = AsyncMock()
        buffer = SituationBuffer(BufferConfig(), on_flush)

        buffer.add(make_situation("A"))
        buffer.add(make_situation("B"))
        buffer.add(make_situation("A", header="later"))

        await buffer.flush()

        identities = [call.args[0].identity for call in on_flush.await_args_list]
        assert sorted(identities) == ["A", "B"]
        assert buffer.total_flushed == 2

    @pytest.mark.asyncio
    async def test_empty_flush_does_nothing(self) -> None:
        on_flush = AsyncMock()
        buffer = SituationBuffer(BufferConfig(), on_flush)

        assert await buffer.flush() == 0
        on_flush.assert_not_awaited()


class TestBound:
    """Tests for the overflow signal."""

    def test_add_signals_only_past_bound(self) -> None:
        buffer = SituationBuffer(BufferConfig(max_pending=3), AsyncMock())

        assert buffer.add(make_situation("1")) is False
        assert buffer.add(make_situation("2")) is False
        assert buffer.add(make_situation("3")) is False
        assert buffer.add(make_situation("4")) is True

    def test_repeats_do_not_count_toward_bound(self) -> None:
        buffer = SituationBuffer(BufferConfig(max_pending=1), AsyncMock())

        assert buffer.add(make_situation("1")) is False
        assert buffer.add(make_situation("1")) is False

    def test_clear_drops_pending(self) -> None:
        buffer = SituationBuffer(BufferConfig(), AsyncMock())
        buffer.add(make_situation("1"))
        buffer.clear()
        assert buffer.pending_count == 0


class TestFlushLoop:
    """Tests for the periodic flush task."""

    @pytest.mark.asyncio
    async def test_periodic_flush_delivers(self) -> None:
        on_flush = AsyncMock()
        buffer = SituationBuffer(BufferConfig(flush_interval_s=0.01), on_flush)
        buffer.add(make_situation("P-1"))

        buffer.start()
        assert buffer.is_running
        await asyncio.sleep(0.05)
        await buffer.stop()

        on_flush.assert_awaited_once()
        assert not buffer.is_running

    @pytest.mark.asyncio
    async def test_stop_keeps_pending(self) -> None:
        on_flush = AsyncMock()
        buffer = SituationBuffer(BufferConfig(flush_interval_s=60.0), on_flush)
        buffer.start()
        buffer.add(make_situation("K-1"))

        await buffer.stop()

        on_flush.assert_not_awaited()
        assert buffer.pending_count == 1

    @pytest.mark.asyncio
    async def test_callback_error_does_not_abort_drain(self) -> None:
        on_flush = AsyncMock(side_effect=[ValueError("boom"), None])
        buffer = SituationBuffer(BufferConfig(), on_flush)
        buffer.add(make_situation("A"))
        buffer.add(make_situation("B"))

        delivered = await buffer.flush()

        assert on_flush.await_count == 2
        assert delivered == 1

    @pytest.mark.asyncio
    async def test_stop_from_inside_callback(self) -> None:
        buffer: SituationBuffer

        async def on_flush(situation: Situation) -> None:
            await buffer.stop()

        buffer = SituationBuffer(BufferConfig(flush_interval_s=0.01), on_flush)
        buffer.add(make_situation("S-1"))
        buffer.start()
        await asyncio.sleep(0.05)

        assert not buffer.is_running


class TestInterruptedDrain:
    """Tests for drains cut short by stop or cancellation."""

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_flush(self) -> None:
        started = asyncio.Event()
        delivered: list[str] = []

        async def on_flush(situation: Situation) -> None:
            started.set()
            await asyncio.sleep(0.05)
            delivered.append(situation.identity)

        buffer = SituationBuffer(BufferConfig(flush_interval_s=0.01), on_flush)
        for identity in ("A", "B", "C"):
            buffer.add(make_situation(identity))

        buffer.start()
        await asyncio.wait_for(started.wait(), timeout=2.0)
        await buffer.stop()

        assert delivered == ["A", "B", "C"]
        assert buffer.pending_count == 0
        assert buffer.total_flushed == 3
        assert not buffer.is_running

    @pytest.mark.asyncio
    async def test_cancelled_drain_requeues_undelivered(self) -> None:
        started = asyncio.Event()

        async def on_flush(situation: Situation) -> None:
            started.set()
            await asyncio.sleep(10)

        buffer = SituationBuffer(BufferConfig(), on_flush)
        for identity in ("A", "B", "C"):
            buffer.add(make_situation(identity))

        task = asyncio.create_task(buffer.flush())
        await asyncio.wait_for(started.wait(), timeout=2.0)
        buffer.add(make_situation("B", header="newer"))
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert buffer.pending_count == 3
        assert buffer.total_flushed == 0
        on_second = AsyncMock()
        buffer._on_flush = on_second
        await buffer.flush()
        headers = {call.args[0].identity: call.args[0].header for call in on_second.await_args_list}
        assert headers == {"A": "Vägarbete", "B": "newer", "C": "Vägarbete"}

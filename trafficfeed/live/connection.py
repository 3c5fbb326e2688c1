"""
Streaming connection manager for the live traffic feed.

Handles the channel lifecycle including:
- Channel establishment with timeout
- Subscription handshake and acknowledgment
- Frame decoding and hand-off to the deduplicating buffer
- Heartbeat-driven dead channel detection
- Exponential backoff reconnection with a bounded attempt budget
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import aiohttp

from trafficfeed.live.buffer import SituationBuffer
from trafficfeed.live.codec import decode_frame, encode_subscription
from trafficfeed.live.config import FeedConfig, SubscriptionConfig
from trafficfeed.live.errors import ConnectionError, MessageParseError, SubscriptionError
from trafficfeed.live.health import HeartbeatMonitor, classify_quality
from trafficfeed.live.serializer import TaskLock
from trafficfeed.live.types import (
    ConnectionQuality,
    ConnectionState,
    FeedErrorRecord,
    FeedStats,
    SituationBatch,
    SubscriptionAck,
)

logger = logging.getLogger(__name__)

# Close codes with a dedicated description
CLOSE_ABNORMAL = 1006
CLOSE_POLICY_VIOLATION = 1008
CLOSE_SERVER_ERROR = 1011


class WebSocketChannel(Protocol):
    """The subset of aiohttp.ClientWebSocketResponse the manager relies on."""

    @property
    def closed(self) -> bool: ...

    @property
    def close_code(self) -> Optional[int]: ...

    async def send_str(self, data: str) -> None: ...

    async def receive(self, timeout: Optional[float] = None) -> aiohttp.WSMessage: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool: ...

    def exception(self) -> Optional[BaseException]: ...


WebSocketFactory = Callable[[str], Awaitable[WebSocketChannel]]


class CloseCategory(str, Enum):
    """How a non-intentional close is treated."""

    TRANSPORT = "transport"
    RETRYABLE = "retryable"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CloseDescription:
    """Human readable interpretation of a channel close."""

    text: str
    category: CloseCategory

    @property
    def should_report(self) -> bool:
        """Rejections are surfaced through on_error even though they are retried."""
        return self.category == CloseCategory.REJECTED


def describe_close(code: Optional[int], reason: Optional[str] = None) -> CloseDescription:
    """Map a close code (and optional reason text) to a description."""
    if code == CLOSE_ABNORMAL:
        return CloseDescription(
            "Connection failed abnormally - check network or API key",
            CloseCategory.TRANSPORT,
        )
    if code == CLOSE_POLICY_VIOLATION:
        return CloseDescription(
            "Connection rejected - invalid API key or policy violation",
            CloseCategory.REJECTED,
        )
    if code == CLOSE_SERVER_ERROR:
        return CloseDescription("Server error - feed API issue", CloseCategory.RETRYABLE)
    if code is None:
        return CloseDescription(reason or "Connection lost", CloseCategory.TRANSPORT)
    return CloseDescription(reason or f"Connection closed (code {code})", CloseCategory.RETRYABLE)


class ConnectionManager:
    """
    Owns one streaming channel and the state machine around it.

    Responsibilities:
    - Channel lifecycle (connect, subscribe, stream, close, reconnect)
    - Routing decoded frames into the SituationBuffer
    - Arming the HeartbeatMonitor while streaming
    - Stats snapshots for observability

    Frame handling, heartbeat checks and buffer drains never interleave: they
    all run under one task-reentrant lock owned by the manager.

    Usage:
        async def on_event(situation: Situation) -> None:
            print(situation.identity, situation.header)

        manager = ConnectionManager(FeedConfig(), auth_key=key)
        await manager.start(SubscriptionConfig(object_types=("Situation",), on_event=on_event))
        # ... later ...
        await manager.stop()
    """

    def __init__(
        self,
        config: FeedConfig,
        auth_key: Optional[str],
        ws_connect: Optional[WebSocketFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "traffic_feed",
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            config: Feed configuration
            auth_key: Feed authentication key
            ws_connect: Optional factory opening the channel (defaults to aiohttp)
            clock: Monotonic clock in seconds, used for liveness and quality
            name: Name for logging purposes
        """
        self._config = config
        self._auth_key = auth_key
        self._ws_connect: WebSocketFactory = ws_connect or self._open_channel
        self._clock = clock
        self._name = name

        # State
        self._state = ConnectionState.IDLE
        self._subscription: Optional[SubscriptionConfig] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[WebSocketChannel] = None
        self._streaming = False

        # Serialization shared with buffer and heartbeat
        self._lock = TaskLock()
        self._buffer: Optional[SituationBuffer] = None
        self._heartbeat = HeartbeatMonitor(
            config.heartbeat,
            last_message_age=self._last_message_age,
            on_dead=self._on_channel_dead,
            lock=self._lock,
            name=f"{name}_heartbeat",
        )

        # Tasks
        self._run_task: Optional[asyncio.Task[None]] = None

        # Reconnection state
        self._reconnect_attempts = 0
        self._intentional_close = False
        self._forced_close_reason: Optional[str] = None

        # Metrics
        self._last_message_at: Optional[float] = None
        self._last_message_time: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._messages_received = 0
        self._frames_dropped = 0
        self._situations_rejected = 0

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the subscription is live."""
        return self._state == ConnectionState.STREAMING

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    async def _set_state(self, new_state: ConnectionState) -> None:
        """Update state. The only place state is mutated."""
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, subscription: SubscriptionConfig) -> None:
        """
        Start streaming for the given subscription.

        Returns once the connection task is scheduled. Calling start while
        already started tears the current session down first.
        """
        if self._run_task is not None or self._buffer is not None:
            logger.info(f"[{self._name}] Restarting with a new subscription")
            await self.stop()

        self._subscription = subscription
        self._intentional_close = False
        self._reconnect_attempts = 0
        self._last_error = None

        if not self._auth_key:
            await self._set_state(ConnectionState.STOPPED)
            await self._report_error("No authentication key configured")
            return

        self._buffer = SituationBuffer(
            self._config.buffer,
            on_flush=subscription.on_event,
            lock=self._lock,
            name=f"{self._name}_buffer",
        )
        self._buffer.start()
        self._run_task = asyncio.create_task(self._run(), name=f"{self._name}_run")
        logger.info(
            f"[{self._name}] Started subscription for {', '.join(subscription.object_types)}"
        )

    async def stop(self) -> None:
        """
        Stop streaming: cancel timers, flush the buffer, close the channel.

        Idempotent.
        """
        if self._run_task is None and self._buffer is None:
            return

        logger.info(f"[{self._name}] Stopping")
        self._intentional_close = True
        if self._state not in (ConnectionState.IDLE, ConnectionState.STOPPED):
            await self._set_state(ConnectionState.CLOSING)

        await self._heartbeat.disarm()

        await self._release_buffer()

        run_task, self._run_task = self._run_task, None
        if run_task is not None and not run_task.done():
            if run_task is asyncio.current_task():
                # Called from a callback on the run task; closing the channel
                # ends the receive loop and the intentional flag ends the run
                await self._close_channel()
            else:
                run_task.cancel()
                # The run task's teardown needs the lock a calling callback may hold
                if not self._lock.held_by_current_task():
                    try:
                        await run_task
                    except asyncio.CancelledError:
                        pass

        await self._close_session()

        self._reconnect_attempts = 0
        await self._set_state(ConnectionState.STOPPED)
        logger.info(f"[{self._name}] Stopped")

    async def _run(self) -> None:
        """Connect, stream, and reconnect until stopped or out of attempts."""
        policy = self._config.connection.reconnect

        while not self._intentional_close:
            code, reason = await self._connect_and_stream()
            if self._intentional_close:
                break

            description = describe_close(code, reason)
            self._reconnect_attempts += 1
            self._last_error = description.text
            logger.warning(
                f"[{self._name}] Connection closed (code={code}): {description.text}"
            )
            if description.should_report:
                await self._report_error(description.text)

            if policy.is_exhausted(self._reconnect_attempts):
                error = ConnectionError(
                    f"Failed to reconnect after {self._reconnect_attempts} attempts",
                    url=self._config.connection.stream_url,
                    close_code=code,
                    reconnect_attempt=self._reconnect_attempts,
                    component="ConnectionManager",
                )
                logger.error(f"[{self._name}] {error}")
                await self._set_state(ConnectionState.STOPPED)
                await self._release_buffer()
                await self._close_session()
                await self._report_error(error.args[0])
                return

            delay = policy.delay_for(self._reconnect_attempts)
            await self._set_state(ConnectionState.RECONNECT_WAITING)
            logger.info(
                f"[{self._name}] Reconnecting in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts}/{policy.max_attempts})"
            )
            await asyncio.sleep(delay)

    async def _release_buffer(self) -> None:
        """Disarm the flush timer and deliver whatever is still buffered."""
        buffer, self._buffer = self._buffer, None
        if buffer is None:
            return
        await buffer.stop()
        async with self._lock:
            flushed = await buffer.drain()
        if flushed:
            logger.info(f"[{self._name}] Flushed {flushed} buffered situations")

    async def _close_session(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _connect_and_stream(self) -> tuple[Optional[int], Optional[str]]:
        """
        Run one connection from open to close.

        Returns:
            The close code (None when the channel never opened) and a reason
        """
        await self._set_state(ConnectionState.CONNECTING)
        url = self._config.connection.stream_url
        logger.info(f"[{self._name}] Connecting to {url}")
        try:
            ws = await self._ws_connect(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"[{self._name}] Failed to open channel: {e!r}")
            return None, f"Failed to open connection: {e or type(e).__name__}"

        self._ws = ws
        self._last_message_at = None
        self._forced_close_reason = None
        try:
            await self._set_state(ConnectionState.AUTHENTICATING)
            try:
                await self._send_subscription(ws)
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"[{self._name}] Failed to send subscription: {e!r}")
                return None, f"Failed to send subscription: {e or type(e).__name__}"

            reason = await self._receive_loop(ws)
            if self._forced_close_reason:
                return None, self._forced_close_reason
            return ws.close_code, reason
        finally:
            await self._teardown_channel(ws)

    async def _send_subscription(self, ws: WebSocketChannel) -> None:
        assert self._subscription is not None and self._auth_key
        payload = encode_subscription(
            self._auth_key,
            self._subscription.object_types,
            self._subscription.schema_version,
            self._subscription.result_limit,
        )
        await ws.send_str(payload.decode("utf-8"))
        logger.debug(f"[{self._name}] Subscription sent")

    async def _receive_loop(self, ws: WebSocketChannel) -> Optional[str]:
        """Consume frames until the channel closes. Returns a close reason if known."""
        while True:
            timeout = None
            if self._state == ConnectionState.AUTHENTICATING:
                timeout = self._config.connection.connect_timeout_s
            try:
                msg = await ws.receive(timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[{self._name}] Subscription not acknowledged within {timeout}s")
                return "Subscription was not acknowledged in time"
            except aiohttp.ClientError as e:
                logger.error(f"[{self._name}] Receive error: {e!r}")
                return f"Receive error: {e}"

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                await self._handle_frame(msg.data)
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                logger.info(f"[{self._name}] Channel closed")
                return msg.extra if isinstance(msg.extra, str) and msg.extra else None
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"[{self._name}] WebSocket error: {ws.exception()}")
                return f"WebSocket error: {ws.exception()}"

    async def _handle_frame(self, raw: Union[str, bytes]) -> None:
        async with self._lock:
            self._messages_received += 1
            try:
                frame = decode_frame(raw)
            except MessageParseError as e:
                self._frames_dropped += 1
                logger.warning(f"[{self._name}] Dropping malformed frame: {e}")
                return

            self._last_message_at = self._clock()
            self._last_message_time = datetime.now(timezone.utc)

            if isinstance(frame, SubscriptionAck):
                logger.info(f"[{self._name}] Subscription acknowledged: {frame.message}")
                await self._enter_streaming()
            elif isinstance(frame, FeedErrorRecord):
                error = SubscriptionError(
                    frame.describe(),
                    feed_error=frame.payload,
                    component="ConnectionManager",
                )
                logger.error(f"[{self._name}] {error}")
                await self._report_error(frame.describe())
            else:
                await self._handle_batch(frame)

    async def _handle_batch(self, batch: SituationBatch) -> None:
        if self._state == ConnectionState.AUTHENTICATING:
            await self._enter_streaming()

        self._situations_rejected += batch.rejected
        if batch.rejected:
            logger.debug(f"[{self._name}] Rejected {batch.rejected} malformed situations")

        if self._buffer is None:
            return
        overflow = False
        for situation in batch.situations:
            overflow = self._buffer.add(situation) or overflow
        if overflow:
            logger.debug(f"[{self._name}] Buffer over capacity, flushing early")
            await self._buffer.drain()

    async def _enter_streaming(self) -> None:
        if self._streaming:
            return
        self._streaming = True
        self._reconnect_attempts = 0
        await self._set_state(ConnectionState.STREAMING)
        self._heartbeat.arm()
        logger.info(f"[{self._name}] Streaming")
        if self._subscription and self._subscription.on_connect:
            await self._invoke("on_connect", self._subscription.on_connect)

    async def _teardown_channel(self, ws: WebSocketChannel) -> None:
        """Release the channel and leave STREAMING if we were in it."""
        await self._heartbeat.disarm()
        if not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.debug(f"[{self._name}] Error closing channel: {e!r}")
        self._ws = None

        if self._streaming:
            self._streaming = False
            if self._subscription and self._subscription.on_disconnect:
                await self._invoke("on_disconnect", self._subscription.on_disconnect)

    async def _close_channel(self) -> None:
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

    async def _on_channel_dead(self, age_s: float) -> None:
        """Heartbeat hook: close the socket and let the close path reconnect."""
        self._forced_close_reason = f"No messages received for {age_s:.0f}s - connection presumed dead"
        await self._close_channel()

    async def _open_channel(self, url: str) -> WebSocketChannel:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.connection.connect_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return await self._session.ws_connect(url)

    async def _report_error(self, reason: str) -> None:
        self._last_error = reason
        if self._subscription and self._subscription.on_error:
            await self._invoke("on_error", self._subscription.on_error, reason)

    async def _invoke(self, label: str, callback: Callable[..., Awaitable[None]], *args: Any) -> None:
        async with self._lock:
            try:
                await callback(*args)
            except Exception as e:
                logger.error(f"[{self._name}] {label} callback error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _last_message_age(self) -> Optional[float]:
        if self._last_message_at is None:
            return None
        return max(0.0, self._clock() - self._last_message_at)

    def get_connection_state(self) -> ConnectionState:
        return self._state

    def get_connection_quality(self) -> ConnectionQuality:
        """Quality from the age of the last valid frame on the current channel."""
        if self._state not in (ConnectionState.AUTHENTICATING, ConnectionState.STREAMING):
            return ConnectionQuality.DISCONNECTED
        return classify_quality(self._last_message_age())

    def get_stats(self) -> FeedStats:
        """Snapshot of the manager's counters. No side effects."""
        return FeedStats(
            reconnect_attempts=self._reconnect_attempts,
            last_message_time=self._last_message_time,
            quality=self.get_connection_quality(),
            connected=self.is_connected,
            buffered_count=len(self._buffer) if self._buffer is not None else 0,
            last_error=self._last_error,
            state=self._state,
            messages_received=self._messages_received,
            frames_dropped=self._frames_dropped,
            situations_rejected=self._situations_rejected,
        )

"""
Liveness monitoring for the streaming channel.

- Connection quality classification from the age of the last inbound frame
- Heartbeat loop detecting a silently-dead channel
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from trafficfeed.live.config import HeartbeatConfig
from trafficfeed.live.serializer import TaskLock
from trafficfeed.live.types import ConnectionQuality

logger = logging.getLogger(__name__)

# Upper bounds (exclusive) of each quality band, in seconds
EXCELLENT_BELOW_S = 5.0
GOOD_BELOW_S = 15.0
POOR_BELOW_S = 60.0


def classify_quality(age_s: Optional[float]) -> ConnectionQuality:
    """Classify connection quality from seconds since the last inbound frame."""
    if age_s is None:
        return ConnectionQuality.DISCONNECTED
    if age_s < EXCELLENT_BELOW_S:
        return ConnectionQuality.EXCELLENT
    if age_s < GOOD_BELOW_S:
        return ConnectionQuality.GOOD
    if age_s < POOR_BELOW_S:
        return ConnectionQuality.POOR
    return ConnectionQuality.DISCONNECTED


class HeartbeatVerdict(str, Enum):
    """Outcome of one heartbeat evaluation."""

    OK = "ok"
    POOR = "poor"
    DEAD = "dead"


class HeartbeatMonitor:
    """
    Periodically inspects the silence on the channel.

    The monitor never touches the socket itself. When the channel looks
    dead it awaits `on_dead`, and the owner closes the socket so that the
    regular close path handles reconnection.
    """

    def __init__(
        self,
        config: HeartbeatConfig,
        last_message_age: Callable[[], Optional[float]],
        on_dead: Callable[[float], Awaitable[None]],
        on_poor: Optional[Callable[[float], Awaitable[None]]] = None,
        lock: Optional[TaskLock] = None,
        name: str = "heartbeat",
    ) -> None:
        """
        Initialize the heartbeat monitor.

        Args:
            config: Heartbeat configuration
            last_message_age: Returns seconds since the last inbound frame, or None
            on_dead: Callback when silence exceeds dead_after_s (receives the age)
            on_poor: Callback when silence exceeds poor_after_s (receives the age)
            lock: Serialization lock shared with the owning connection manager
            name: Name for logging purposes
        """
        self._config = config
        self._last_message_age = last_message_age
        self._on_dead = on_dead
        self._on_poor = on_poor
        self._lock = lock or TaskLock()
        self._name = name

        self._monitor_task: Optional[asyncio.Task[None]] = None
        self._last_verdict = HeartbeatVerdict.OK

    @property
    def is_armed(self) -> bool:
        """Check if the heartbeat loop is running."""
        return self._monitor_task is not None and not self._monitor_task.done()

    @property
    def last_verdict(self) -> HeartbeatVerdict:
        return self._last_verdict

    def evaluate(self, age_s: Optional[float]) -> HeartbeatVerdict:
        """Pure verdict for a given silence duration."""
        if age_s is None:
            return HeartbeatVerdict.OK
        if age_s > self._config.dead_after_s:
            return HeartbeatVerdict.DEAD
        if age_s > self._config.poor_after_s:
            return HeartbeatVerdict.POOR
        return HeartbeatVerdict.OK

    def arm(self) -> None:
        """Start the heartbeat loop."""
        if self.is_armed:
            return
        self._last_verdict = HeartbeatVerdict.OK
        self._monitor_task = asyncio.create_task(self._monitor_loop(), name=f"{self._name}_loop")
        logger.debug(f"[{self._name}] Armed (every {self._config.check_interval_s}s)")

    async def disarm(self) -> None:
        """Stop the heartbeat loop."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"[{self._name}] Disarmed")

    async def check(self) -> HeartbeatVerdict:
        """Run one heartbeat evaluation and fire callbacks."""
        async with self._lock:
            age = self._last_message_age()
            verdict = self.evaluate(age)
            previous, self._last_verdict = self._last_verdict, verdict

            if verdict == HeartbeatVerdict.POOR and previous == HeartbeatVerdict.OK:
                logger.warning(
                    f"[{self._name}] No messages received for {age:.0f}s, "
                    f"connection quality downgraded to poor"
                )
                if self._on_poor:
                    try:
                        await self._on_poor(age)  # type: ignore[arg-type]
                    except Exception as e:
                        logger.error(f"[{self._name}] Poor-quality callback error: {e}")

        # Outside the lock: the owner's teardown waits on the receive loop
        if verdict == HeartbeatVerdict.DEAD:
            logger.error(f"[{self._name}] Connection appears dead ({age:.0f}s silent)")
            try:
                await self._on_dead(age)  # type: ignore[arg-type]
            except Exception as e:
                logger.error(f"[{self._name}] Dead-channel callback error: {e}")

        return verdict

    async def _monitor_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._config.check_interval_s)
                await self.check()
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Heartbeat loop cancelled")
            raise

"""
Message buffer and deduplicator for decoded Situations.

Situations are held by identity (last write wins) and drained to the
consumer on a fixed interval, or early when too many identities are pending.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from trafficfeed.live.config import BufferConfig
from trafficfeed.live.serializer import TaskLock
from trafficfeed.live.types import Situation

logger = logging.getLogger(__name__)


class SituationBuffer:
    """
    Collapses repeated deliveries of the same Situation identity.

    Responsibilities:
    - Keep only the most recent content per identity
    - Drain on a fixed interval through the consumer callback
    - Signal when the pending count exceeds the configured bound

    The buffer never takes the serialization lock itself inside `drain()`;
    the periodic loop and `flush()` acquire `lock` around it, and callers that
    already hold the lock (frame handling) call `drain()` directly.
    """

    def __init__(
        self,
        config: BufferConfig,
        on_flush: Callable[[Situation], Awaitable[None]],
        lock: Optional[TaskLock] = None,
        name: str = "buffer",
    ) -> None:
        """
        Initialize the buffer.

        Args:
            config: Buffer configuration
            on_flush: Async callback receiving one Situation per distinct identity
            lock: Serialization lock shared with the owning connection manager
            name: Name for logging purposes
        """
        self._config = config
        self._on_flush = on_flush
        self._lock = lock or TaskLock()
        self._name = name

        self._pending: dict[str, Situation] = {}
        self._flush_task: Optional[asyncio.Task[None]] = None

        self._total_added = 0
        self._total_flushed = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_count(self) -> int:
        """Number of distinct identities waiting for the next drain."""
        return len(self._pending)

    @property
    def total_flushed(self) -> int:
        """Number of Situations handed to the consumer so far."""
        return self._total_flushed

    @property
    def is_running(self) -> bool:
        """Check if the periodic flush is armed."""
        return self._flush_task is not None and not self._flush_task.done()

    def add(self, situation: Situation) -> bool:
        """
        Buffer a Situation, replacing any earlier one with the same identity.

        Returns:
            True if the pending count now exceeds the bound and the caller
            should drain immediately.
        """
        # Re-insert so the dict order reflects the latest arrival
        self._pending.pop(situation.identity, None)
        self._pending[situation.identity] = situation
        self._total_added += 1
        return len(self._pending) > self._config.max_pending

    async def drain(self) -> int:
        """
        Hand every pending Situation to the consumer and clear the buffer.

        The caller must hold the serialization lock. Returns the number of
        Situations delivered.
        """
        if not self._pending:
            return 0

        batch = self._pending
        self._pending = {}
        undelivered = list(batch.values())

        delivered = 0
        try:
            while undelivered:
                situation = undelivered[0]
                try:
                    await self._on_flush(situation)
                    delivered += 1
                except Exception as e:
                    logger.error(
                        f"[{self._name}] Consumer callback failed for {situation.identity}: {e}",
                        exc_info=True,
                    )
                undelivered.pop(0)
        finally:
            if undelivered:
                # Interrupted mid-batch: requeue, newer content for an identity wins
                for situation in undelivered:
                    self._pending.setdefault(situation.identity, situation)
                logger.warning(
                    f"[{self._name}] Drain interrupted, requeued {len(undelivered)} situations"
                )

        self._total_flushed += delivered
        logger.debug(f"[{self._name}] Flushed {delivered}/{len(batch)} situations")
        return delivered

    async def flush(self) -> int:
        """Drain under the serialization lock."""
        async with self._lock:
            return await self.drain()

    def start(self) -> None:
        """Arm the periodic flush."""
        if self.is_running:
            logger.warning(f"[{self._name}] Flush loop already running")
            return
        self._flush_task = asyncio.create_task(self._flush_loop(), name=f"{self._name}_flush")

    async def stop(self) -> None:
        """Disarm the periodic flush. Pending Situations are kept."""
        task, self._flush_task = self._flush_task, None
        if task is None:
            return
        if task is asyncio.current_task():
            # Stopped from inside a consumer callback
            task.cancel()
            return
        # Let an in-flight drain finish before cancelling
        async with self._lock:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def clear(self) -> None:
        """Drop all pending Situations without delivering them."""
        self._pending.clear()

    async def _flush_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._config.flush_interval_s)
                await self.flush()
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Flush loop cancelled")
            raise

"""
Task-reentrant asyncio lock used to serialize frame handling, heartbeat
checks and buffer drains.

A consumer callback invoked while the lock is held may call back into the
client (for example `stop()`) without deadlocking on the same task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional


class TaskLock:
    """asyncio.Lock that the owning task may re-enter."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task[Any]] = None
        self._depth = 0

    def locked(self) -> bool:
        return self._lock.locked()

    def held_by_current_task(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    async def __aenter__(self) -> "TaskLock":
        task = asyncio.current_task()
        if self._owner is not None and self._owner is task:
            self._depth += 1
            return self
        await self._lock.acquire()
        self._owner = task
        self._depth = 1
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()

"""Serialized setup/teardown queue.

Each client owns one queue.  Operations run one at a time in FIFO order,
so two quick ``update_config`` calls can never install and remove
interceptors out of order.  A failed operation does not stop later ones;
its error is kept as the queue's current error and raised by ``drain()``
until a later operation succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger("fme_export.api.queue")

Operation = Callable[[], Awaitable[None]]


class SerialTaskQueue:
    """FIFO queue of async operations, one in flight at a time."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._pending: deque[tuple[str, Operation]] = deque()
        self._lock: asyncio.Lock | None = None
        self._error: BaseException | None = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def error(self) -> BaseException | None:
        return self._error

    def enqueue(self, operation: Operation, label: str = "") -> None:
        self._pending.append((label or getattr(operation, "__name__", "operation"), operation))

    async def drain(self) -> None:
        """Run every pending operation in order.

        Raises:
            Exception: The error of the most recent operation, if it failed.
        """
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            while self._pending:
                label, operation = self._pending.popleft()
                try:
                    await operation()
                except Exception as exc:
                    logger.warning("Queued operation failed | queue=%s | op=%s | error=%s", self.name, label, exc)
                    self._error = exc
                else:
                    self._error = None
            if self._error is not None:
                raise self._error

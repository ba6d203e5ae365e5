"""In-process asyncio queue implementation of PaymentQueue."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paygate.core.models import PaymentRecord


class AsyncioPaymentQueue:
    """PaymentQueue backed by asyncio.Queue."""

    def __init__(self, max_size: int = 10_000) -> None:
        self._queue: asyncio.Queue[PaymentRecord] = asyncio.Queue(maxsize=max_size)

    async def put(self, record: PaymentRecord) -> None:
        """Never waits; raises asyncio.QueueFull when the queue is at capacity."""
        self._queue.put_nowait(record)

    async def get(self) -> PaymentRecord:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()

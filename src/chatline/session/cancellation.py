from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class CancellationToken:
    """Identifies one in-flight operation and carries its stop signal."""

    def __init__(self) -> None:
        self.id = uuid.uuid4().hex[:8]
        self._cancelled = False
        self._stopped = asyncio.Event()

    def __repr__(self) -> str:
        return f"CancellationToken(id={self.id!r}, cancelled={self._cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def stopped(self) -> asyncio.Event:
        return self._stopped

    def cancel(self) -> None:
        self._cancelled = True
        self._stopped.set()


async def wait_until_stopped(coro: Awaitable[T], stop_event: asyncio.Event) -> T:
    """Await ``coro`` unless ``stop_event`` is set first, which cancels it."""
    fut = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(stop_event.wait())
    waiter.add_done_callback(lambda _: fut.cancel())
    try:
        return await fut
    finally:
        waiter.cancel()

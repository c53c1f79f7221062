"""Cooperative cancellation shared between a dispatch and its network calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation flag.

    Once cancelled, callers must not issue new I/O. Requests already on the
    wire are allowed to finish.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def settle(awaitable: Awaitable[T], token: CancellationToken | None = None) -> T:
    """Await an in-flight operation without abandoning it on cancellation.

    If the surrounding task is cancelled, the token is tripped, the operation
    is allowed to complete, and the cancellation is re-raised.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if token is not None:
            token.cancel("task cancelled")
        await asyncio.wait([task])
        if not task.cancelled():
            task.exception()  # mark retrieved; the cancellation takes precedence
        raise

"""
Cooperative cancellation.

A `CancellationToken` is created by the caller (usually the interactive
loop) and passed down through the router, the adapters and the tool
registry. Cancelling it aborts whatever awaitable is currently pending on
the token and makes that operation raise `OperationCancelled`.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from research_agent.errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an `asyncio.Event`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        If the token fires, the pending task is cancelled (which aborts the
        underlying network call) and `OperationCancelled` is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason or "cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise OperationCancelled(self.reason or "cancelled")


async def guarded(awaitable: Awaitable[T], cancel: Optional[CancellationToken]) -> T:
    """Await `awaitable`, racing it against `cancel` when one is given."""
    if cancel is None:
        return await awaitable
    return await cancel.run(awaitable)

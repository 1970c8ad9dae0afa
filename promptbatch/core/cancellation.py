"""Revocable cancellation signal shared by the in-flight work of a run."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised by :meth:`CancellationToken.guard` when the token fires first."""


class CallCancelled(Exception):
    """The guarded call cancelled itself while the token was still live."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def sleep(self, delay: float) -> bool:
        """Wait ``delay`` seconds; return True if cancelled before it elapsed."""

        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            return False
        return True

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token fires the wrapped call is cancelled, which aborts any
        underlying transport, and :class:`OperationCancelled` is raised. A
        call that ends cancelled on its own raises :class:`CallCancelled`, so
        only cancellation of the caller propagates as ``CancelledError``.
        """

        call = asyncio.ensure_future(awaitable)
        if self.cancelled:
            call.cancel()
            await asyncio.gather(call, return_exceptions=True)
            raise OperationCancelled(self._reason or "cancelled")
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()
        if call in done:
            if call.cancelled():
                if self.cancelled:
                    raise OperationCancelled(self._reason or "cancelled")
                raise CallCancelled("Request cancelled")
            return call.result()
        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        raise OperationCancelled(self._reason or "cancelled")


__all__ = ["CallCancelled", "CancellationToken", "OperationCancelled"]

"""Cooperative cancellation for an in-flight generation."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class StreamCancelled(Exception):
    """Raised at a suspension point when the user cancelled the stream.

    Deliberately not a ``ChatError``: a cancellation is never reported
    as a failure.
    """


class CancellationToken:
    """A single-shot cancellation signal bound to one stream session."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelled()


async def race(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """Await *awaitable* unless *token* fires first.

    The losing side is cancelled. If the token wins, the operation is
    cancelled and awaited before ``StreamCancelled`` is raised, so no
    read is left running in the background.
    """
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise StreamCancelled()
    operation = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Reached on normal return and when the caller itself is cancelled.
        waiter.cancel()
        if not operation.done():
            operation.cancel()

    if operation.done() and not operation.cancelled():
        return operation.result()

    try:
        await operation
    except asyncio.CancelledError:
        pass
    raise StreamCancelled()

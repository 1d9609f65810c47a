"""Deadlines and cooperative cancellation for provider calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when a run's cancellation event is set during a provider call."""


async def guarded(
    awaitable: Awaitable[T],
    *,
    timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Await `awaitable` under a deadline, racing an optional cancel signal.

    Raises `TimeoutError` when the deadline expires and `OperationCancelled`
    when `cancel_event` is set first. The inner call is cancelled in both cases.
    """

    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled("operation cancelled before it started")

    work = asyncio.ensure_future(awaitable)
    if cancel_event is None:
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"provider call exceeded {timeout}s") from exc

    watcher = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {work, watcher},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    if watcher in done:
        raise OperationCancelled("operation cancelled")
    raise TimeoutError(f"provider call exceeded {timeout}s")

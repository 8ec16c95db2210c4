"""Cooperative cancellation for orchestration runs.

An ``AbortSignal`` is threaded through the orchestrator into every
suspension point: permission prompts, tool executions and LLM calls.
``run_abortable`` races an awaitable against the signal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from codeh_llm.errors import AbortError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """One-shot cancellation flag with callbacks.

    Callbacks registered after the signal fired are invoked immediately.
    Setting an already-set signal is a no-op.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._reason: str | None = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def set(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.warning("Abort callback %r raised", callback, exc_info=True)

    def on_abort(self, callback: Callable[[], None]) -> None:
        if self._event.is_set():
            callback()
            return
        self._callbacks.append(callback)

    async def wait(self) -> None:
        await self._event.wait()


async def run_abortable(awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    """Await *awaitable* unless *signal* fires first.

    On abort the inner task is cancelled and ``AbortError`` is raised.
    Without a signal this is a plain ``await``.
    """
    if signal is None:
        return await awaitable

    if signal.is_set:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AbortError(signal.reason or "Operation aborted")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not waiter.done():
            waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task.done() and not task.cancelled():
        return task.result()
    if signal.is_set:
        raise AbortError(signal.reason or "Operation aborted")
    return task.result()

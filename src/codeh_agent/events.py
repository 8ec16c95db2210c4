"""Event system for tool orchestration.

Defines the event kinds covering one orchestration run, plus the emitter
the orchestrator and ``HandleToolCalls`` use to notify observers (the
terminal UI renders progress from these).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    """Orchestration event types."""

    # Run lifecycle
    ORCHESTRATION_START = "orchestration.start"
    ORCHESTRATION_END = "orchestration.end"

    # Iterations
    ITERATION_START = "iteration.start"
    ITERATION_LIMIT = "iteration.limit"

    # Per tool call
    TOOL_PERMISSION_REQUESTED = "tool.permission_requested"
    TOOL_REJECTED = "tool.rejected"
    TOOL_CALL_START = "tool.call_start"
    TOOL_CALL_END = "tool.call_end"

    # Model output
    ASSISTANT_MESSAGE = "assistant.message"

    ERROR = "error"


@dataclass
class OrchestrationEvent:
    """A single event emitted during orchestration."""

    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)


# Callback type for event handlers
EventHandler = Callable[[OrchestrationEvent], Awaitable[None] | None]


class EventEmitter:
    """Event emitter with callback and async-iterator consumers.

    Handlers may be sync or async and are called in registration order.
    A handler that raises is logged and skipped; it never breaks the
    orchestration loop.

    ``events()`` yields the same events from an ``asyncio.Queue``;
    ``close()`` ends that iteration.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[OrchestrationEvent | None] = asyncio.Queue()

    def on(self, handler: EventHandler) -> None:
        """Register an event handler."""
        self._handlers.append(handler)

    def off(self, handler: EventHandler) -> None:
        """Remove an event handler."""
        self._handlers = [h for h in self._handlers if h is not handler]

    async def emit(self, event: OrchestrationEvent) -> None:
        """Emit an event to the async queue, then to all handlers."""
        await self._queue.put(event)
        for handler in self._handlers:
            try:
                result = handler(event)
                if isinstance(result, Awaitable):
                    await result
            except Exception:  # noqa: BLE001
                logger.warning("Event handler failed for %s", event.kind, exc_info=True)

    async def close(self) -> None:
        """Unblock one pending ``events()`` consumer."""
        await self._queue.put(None)

    async def events(self) -> AsyncGenerator[OrchestrationEvent, None]:
        """Yield events as they are emitted until ``close()`` is called.

        Only one concurrent consumer is supported (queue semantics).
        """
        while True:
            item = await self._queue.get()
            if item is None:
                break
            yield item

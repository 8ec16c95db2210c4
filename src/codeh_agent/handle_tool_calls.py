"""Permission-gated execution of one batch of tool calls.

For each call: lookup → permission → validate → execute. Every call ends
in exactly one terminal ``ToolExecutionContext``; nothing a tool or a
gate does short-circuits the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from codeh_agent.abort import AbortSignal, run_abortable
from codeh_agent.context import ToolExecutionContext
from codeh_agent.events import EventEmitter, EventKind, OrchestrationEvent
from codeh_agent.permissions import PermissionGate, ToolPermissionContext
from codeh_agent.tools.base import ToolExecutor
from codeh_agent.tools.registry import ToolRegistry
from codeh_llm.errors import AbortError
from codeh_llm.types import ToolCall

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


@dataclass
class HandleToolCallsResult:
    """Terminal contexts of a batch, in input order."""

    contexts: list[ToolExecutionContext]
    all_approved: bool
    all_completed: bool

    @classmethod
    def from_contexts(cls, contexts: list[ToolExecutionContext]) -> HandleToolCallsResult:
        return cls(
            contexts=contexts,
            all_approved=all(not c.is_rejected() for c in contexts),
            all_completed=all(c.is_completed() for c in contexts),
        )


class HandleToolCalls:
    """Runs tool calls through a ``PermissionGate`` and the ``ToolRegistry``.

    Usage::

        handler = HandleToolCalls(registry, gate, tool_timeout=60)
        result = await handler.execute(response.tool_calls)
        for ctx in result.contexts:
            print(ctx.tool_call.name, ctx.status)

    ``execute`` handles calls one at a time: the next permission prompt
    appears only after the previous call is terminal. ``execute_parallel``
    dispatches all calls concurrently (permission prompts included).
    Both return contexts in input order.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_gate: PermissionGate,
        *,
        tool_timeout: float | None = None,
        event_emitter: EventEmitter | None = None,
    ) -> None:
        self._registry = registry
        self._gate = permission_gate
        self._tool_timeout = tool_timeout
        self._emitter = event_emitter

    async def execute(
        self,
        tool_calls: list[ToolCall],
        *,
        conversation_context: str | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> HandleToolCallsResult:
        """Handle *tool_calls* strictly in order."""
        _require_calls(tool_calls)
        contexts = [
            await self._run_one(tc, conversation_context, abort_signal) for tc in tool_calls
        ]
        return self._finish(contexts, parallel=False)

    async def execute_parallel(
        self,
        tool_calls: list[ToolCall],
        *,
        conversation_context: str | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> HandleToolCallsResult:
        """Handle *tool_calls* concurrently; results keep input order.

        There is no concurrency limit: every call of the batch is in flight
        at once.
        """
        _require_calls(tool_calls)
        results = await asyncio.gather(
            *(self._run_one(tc, conversation_context, abort_signal) for tc in tool_calls),
            return_exceptions=True,
        )

        contexts: list[ToolExecutionContext] = []
        for tool_call, result in zip(tool_calls, results, strict=True):
            if isinstance(result, (KeyboardInterrupt, SystemExit, asyncio.CancelledError)):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error handling tool %s: %s", tool_call.name, result
                )
                contexts.append(
                    ToolExecutionContext.create(tool_call).with_error(
                        f"{type(result).__name__}: {result}"
                    )
                )
            else:
                contexts.append(result)
        return self._finish(contexts, parallel=True)

    # ------------------------------------------------------------------ #
    # One call
    # ------------------------------------------------------------------ #

    async def _run_one(
        self,
        tool_call: ToolCall,
        conversation_context: str | None,
        abort_signal: AbortSignal | None,
    ) -> ToolExecutionContext:
        context = ToolExecutionContext.create(tool_call)
        name = tool_call.name

        executor = self._registry.get_executor(name)
        if executor is None:
            logger.warning("Tool not found: %s", name)
            return await self._ended(context.with_error(f"Tool not found: {name}"))
        if tool_call.arguments_error is not None:
            return await self._ended(
                context.with_error(
                    f"Invalid arguments for tool '{name}': {tool_call.arguments_error}"
                )
            )

        if abort_signal is not None and abort_signal.is_set:
            return await self._ended(context.with_error(CANCELLED))

        approved, reason = await self._check_permission(
            tool_call, executor, conversation_context, abort_signal
        )
        if abort_signal is not None and abort_signal.is_set and not approved:
            return await self._ended(context.with_error(CANCELLED))
        if not approved:
            logger.debug("Tool %s rejected: %s", name, reason or "-")
            context = context.with_permission_rejected(reason)
            await self._emit(
                EventKind.TOOL_REJECTED,
                {"tool": name, "call_id": tool_call.id, "reason": reason},
            )
            return await self._ended(context)

        context = context.with_permission_granted().with_execution_started()
        logger.debug("Executing tool %s (call %s)", name, tool_call.id)
        await self._emit(
            EventKind.TOOL_CALL_START,
            {"tool": name, "call_id": tool_call.id, "arguments": tool_call.arguments},
        )

        try:
            valid = executor.validate_parameters(tool_call.arguments)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Validating arguments for %s raised %s", name, type(exc).__name__)
            return await self._ended(
                context.with_error(f"Parameter validation failed for tool '{name}': {exc}")
            )
        if not valid:
            return await self._ended(
                context.with_error(f"Invalid parameters for tool '{name}'")
            )

        try:
            result = await run_abortable(self._invoke(executor, tool_call.arguments), abort_signal)
        except AbortError:
            context = context.with_error(CANCELLED)
        except _ToolTimeout as exc:
            context = context.with_error(f"Tool '{name}' timed out after {exc.seconds}s")
        except Exception as exc:  # noqa: BLE001
            logger.debug("Tool %s raised %s", name, type(exc).__name__, exc_info=True)
            context = context.with_error(str(exc) or type(exc).__name__)
        else:
            context = context.with_result(result)
        return await self._ended(context)

    async def _check_permission(
        self,
        tool_call: ToolCall,
        executor: ToolExecutor,
        conversation_context: str | None,
        abort_signal: AbortSignal | None,
    ) -> tuple[bool, str | None]:
        """Pre-approval first; the gate is only asked when that is false.

        A gate that raises denies the call.
        """
        if self._gate.has_pre_approval(tool_call.name):
            return True, None

        await self._emit(
            EventKind.TOOL_PERMISSION_REQUESTED,
            {"tool": tool_call.name, "call_id": tool_call.id},
        )
        permission_context = ToolPermissionContext(
            tool_call=tool_call,
            tool_description=_describe(executor),
            conversation_context=conversation_context,
        )
        try:
            result = await run_abortable(
                self._gate.request_permission(permission_context), abort_signal
            )
        except AbortError:
            return False, CANCELLED
        except Exception as exc:  # noqa: BLE001
            logger.error("Permission request for %s failed: %s", tool_call.name, exc)
            return False, f"Permission request failed: {exc}"
        return result.approved, result.reason

    async def _invoke(self, executor: ToolExecutor, arguments: dict[str, Any]) -> Any:
        """Run the tool under ``tool_timeout``.

        Only expiry of our own deadline becomes ``_ToolTimeout``; a
        ``TimeoutError`` raised by the tool itself propagates unchanged.
        """
        try:
            async with asyncio.timeout(self._tool_timeout) as scope:
                return await executor.execute(arguments)
        except TimeoutError:
            if scope.expired():
                raise _ToolTimeout(self._tool_timeout) from None
            raise

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _ended(self, context: ToolExecutionContext) -> ToolExecutionContext:
        logger.debug("Tool %s finished: %s", context.tool_call.name, context.status)
        await self._emit(
            EventKind.TOOL_CALL_END,
            {
                "tool": context.tool_call.name,
                "call_id": context.tool_call.id,
                "status": str(context.status),
                "error": context.error,
                "reason": context.rejection_reason,
                "output": context.result.output if context.result else None,
            },
        )
        return context

    def _finish(
        self, contexts: list[ToolExecutionContext], *, parallel: bool
    ) -> HandleToolCallsResult:
        result = HandleToolCallsResult.from_contexts(contexts)
        logger.info(
            "Handled %d tool call(s)%s: %d completed, %d rejected, %d failed",
            len(contexts),
            " in parallel" if parallel else "",
            sum(1 for c in contexts if c.is_completed()),
            sum(1 for c in contexts if c.is_rejected()),
            sum(1 for c in contexts if c.is_failed()),
        )
        return result

    async def _emit(self, kind: EventKind, data: dict[str, Any]) -> None:
        if self._emitter is not None:
            await self._emitter.emit(OrchestrationEvent(kind=kind, data=data))


class _ToolTimeout(Exception):
    """``tool_timeout`` expired while the tool was running."""

    def __init__(self, seconds: float | None) -> None:
        super().__init__(f"timed out after {seconds}s")
        self.seconds = seconds


def _describe(executor: ToolExecutor) -> str | None:
    try:
        return executor.get_definition().description
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not read tool definition: %s", exc)
        return None


def _require_calls(tool_calls: list[ToolCall]) -> None:
    if not tool_calls:
        raise ValueError("HandleToolCalls requires at least one tool call")

"""The agentic tool loop.

``ToolExecutionOrchestrator.orchestrate`` takes a turn whose assistant
response requests tools and drives the loop::

    detect tool calls → permission → execute → feedback → LLM → repeat

until the model answers without tool calls or ``max_iterations`` is
reached. Tool failures and rejections are fed back to the model as
``tool`` messages; LLM errors propagate to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from codeh_agent.abort import AbortSignal, run_abortable
from codeh_agent.context import ToolExecutionContext
from codeh_agent.events import EventEmitter, EventKind, OrchestrationEvent
from codeh_agent.formatting import ToolResultFormatter, build_feedback_message
from codeh_agent.handle_tool_calls import HandleToolCalls, HandleToolCallsResult
from codeh_agent.history import HistoryRepository
from codeh_agent.permissions import PermissionGate
from codeh_agent.tools.registry import ToolRegistry
from codeh_agent.turn import Turn
from codeh_llm.client import ApiClient
from codeh_llm.errors import AbortError
from codeh_llm.types import ChatRequest, ChatResponse, Message, StreamChunk, ToolCall

logger = logging.getLogger(__name__)

# Receives each non-empty piece of streamed assistant text.
TextChunkCallback = Callable[[str], None]


@dataclass
class OrchestratorConfig:
    """Configuration for ``ToolExecutionOrchestrator``.

    Attributes:
        parallel: Dispatch each batch with ``execute_parallel``.
        max_iterations: Upper bound on loop iterations (soft stop).
        tool_timeout: Per-tool execution timeout in seconds. None = unbounded.
        history_window: How many recent history messages start the
            continuation context.
        model: Passed through on every continuation request.
        system_prompt: Passed through on every continuation request.
    """

    parallel: bool = False
    max_iterations: int = 5
    tool_timeout: float | None = None
    history_window: int = 10
    model: str | None = None
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.history_window < 0:
            raise ValueError(f"history_window must be >= 0, got {self.history_window}")


@dataclass
class OrchestrationResult:
    """Outcome of one ``orchestrate`` call.

    ``execution_contexts`` holds every context of every batch, in
    iteration order and then call order.
    """

    final_turn: Turn
    execution_contexts: list[ToolExecutionContext] = field(default_factory=list)
    iterations: int = 1


class ToolExecutionOrchestrator:
    """Coordinates tool execution and LLM continuation.

    Usage::

        orchestrator = ToolExecutionOrchestrator(
            registry, InteractivePermissionHandler(prompt), client, history,
            OrchestratorConfig(max_iterations=8),
        )
        result = await orchestrator.orchestrate(turn, on_chunk=print)
        print(result.final_turn.response.content)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_gate: PermissionGate,
        client: ApiClient,
        history: HistoryRepository,
        config: OrchestratorConfig | None = None,
        *,
        formatter: ToolResultFormatter | None = None,
        event_emitter: EventEmitter | None = None,
        handle_tool_calls: HandleToolCalls | None = None,
    ) -> None:
        self._registry = registry
        self._client = client
        self._history = history
        self._config = config or OrchestratorConfig()
        self._formatter = formatter or ToolResultFormatter()
        self._emitter = event_emitter
        self._handle_tool_calls = handle_tool_calls or HandleToolCalls(
            registry,
            permission_gate,
            tool_timeout=self._config.tool_timeout,
            event_emitter=event_emitter,
        )

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @staticmethod
    def requires_tool_execution(turn: Turn) -> bool:
        return turn.has_tool_calls()

    async def orchestrate(
        self,
        turn: Turn,
        context_overrides: list[Message] | None = None,
        on_chunk: TextChunkCallback | None = None,
        *,
        conversation_context: str | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> OrchestrationResult:
        """Run the tool loop starting from *turn*.

        Args:
            turn: The turn whose response may request tools.
            context_overrides: Messages to start the continuation context
                from instead of the history window.
            on_chunk: When given, continuations are streamed and each text
                delta is forwarded here.
            conversation_context: Free text shown in permission prompts.
            abort_signal: Cancels pending permission prompts, running tools
                and LLM calls.

        Returns:
            The last turn, all execution contexts and the iteration count.

        Raises:
            LLMError: A continuation call failed.
            AbortError: *abort_signal* fired before or during an LLM call.
        """
        max_iterations = self._config.max_iterations
        current = turn
        contexts: list[ToolExecutionContext] = []
        messages: list[Message] | None = None
        iterations = 0

        logger.info("Starting tool orchestration (max %d iterations)", max_iterations)
        await self._emit(
            EventKind.ORCHESTRATION_START,
            {"turn_id": turn.id, "max_iterations": max_iterations},
        )

        while iterations < max_iterations:
            iterations += 1
            tool_calls = current.requested_tool_calls
            if not tool_calls:
                logger.info("No tool calls in iteration %d; orchestration complete", iterations)
                break

            logger.info(
                "Iteration %d/%d: %d tool call(s)", iterations, max_iterations, len(tool_calls)
            )
            await self._emit(
                EventKind.ITERATION_START,
                {"iteration": iterations, "tool_calls": [tc.name for tc in tool_calls]},
            )

            batch = await self._execute_tools(tool_calls, conversation_context, abort_signal)
            contexts.extend(batch.contexts)
            if not batch.all_approved:
                logger.info("Some tools were rejected; sending rejection feedback")

            if messages is None:
                messages = await self._base_messages(current, context_overrides)
            feedback = [build_feedback_message(c, self._formatter) for c in batch.contexts]
            for message in feedback:
                await self._history.add_message(message)
            messages.extend(feedback)

            current = await self._continue(feedback, messages, on_chunk, abort_signal)
        else:
            if current.has_tool_calls():
                logger.warning(
                    "Maximum iterations (%d) reached; stopping orchestration", max_iterations
                )
                await self._emit(
                    EventKind.ITERATION_LIMIT,
                    {
                        "iterations": iterations,
                        "pending_tool_calls": [tc.name for tc in current.requested_tool_calls],
                    },
                )

        response_length = len(current.response.content) if current.response else 0
        logger.info(
            "Orchestration summary: %d iteration(s), %d tool call(s), %d char response",
            iterations,
            len(contexts),
            response_length,
        )
        await self._emit(
            EventKind.ORCHESTRATION_END,
            {"iterations": iterations, "tool_calls": len(contexts), "turn_id": current.id},
        )
        return OrchestrationResult(
            final_turn=current, execution_contexts=contexts, iterations=iterations
        )

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    async def _execute_tools(
        self,
        tool_calls: list[ToolCall],
        conversation_context: str | None,
        abort_signal: AbortSignal | None,
    ) -> HandleToolCallsResult:
        if self._config.parallel:
            return await self._handle_tool_calls.execute_parallel(
                tool_calls, conversation_context=conversation_context, abort_signal=abort_signal
            )
        return await self._handle_tool_calls.execute(
            tool_calls, conversation_context=conversation_context, abort_signal=abort_signal
        )

    async def _base_messages(
        self, turn: Turn, context_overrides: list[Message] | None
    ) -> list[Message]:
        """History window (or overrides) plus the turn's own exchange."""
        if context_overrides is not None:
            base = list(context_overrides)
        else:
            base = list(await self._history.get_recent_messages(self._config.history_window))
        seen = {m.id for m in base}
        for message in (turn.request, turn.response):
            if message is not None and message.id not in seen:
                base.append(message)
                seen.add(message.id)
        return base

    async def _continue(
        self,
        feedback: list[Message],
        messages: list[Message],
        on_chunk: TextChunkCallback | None,
        abort_signal: AbortSignal | None,
    ) -> Turn:
        """Send the conversation back to the model and build the next turn."""
        request = ChatRequest(
            messages=list(messages),
            tools=self._registry.api_definitions() or None,
            model=self._config.model,
            system_prompt=self._config.system_prompt,
        )
        response = await self._call_llm(request, on_chunk, abort_signal)

        assistant = response.to_message()
        await self._history.add_message(assistant)
        messages.append(assistant)
        logger.debug(
            "Assistant replied with %d char(s) and %d tool call(s)",
            len(assistant.content),
            len(assistant.tool_calls),
        )
        await self._emit(
            EventKind.ASSISTANT_MESSAGE,
            {
                "content": assistant.content,
                "tool_calls": [tc.name for tc in assistant.tool_calls],
                "finish_reason": str(response.finish_reason),
            },
        )

        request_message = Message.user(
            "\n\n".join(m.content for m in feedback),
            metadata={"is_tool_feedback": True},
        )
        metadata: dict[str, Any] = {"finish_reason": str(response.finish_reason)}
        if response.model:
            metadata["model"] = response.model
        if response.usage is not None:
            metadata["usage"] = response.usage
        return (
            Turn.create(request_message)
            .with_response(assistant)
            .with_tool_calls(response.tool_calls)
            .with_metadata(**metadata)
        )

    async def _call_llm(
        self,
        request: ChatRequest,
        on_chunk: TextChunkCallback | None,
        abort_signal: AbortSignal | None,
    ) -> ChatResponse:
        if abort_signal is not None and abort_signal.is_set:
            raise AbortError(abort_signal.reason or "Orchestration aborted")

        try:
            if on_chunk is None:
                return await run_abortable(self._client.chat(request), abort_signal)

            def forward(chunk: StreamChunk) -> None:
                if chunk.content:
                    on_chunk(chunk.content)

            return await run_abortable(self._client.stream_chat(request, forward), abort_signal)
        except Exception as exc:
            logger.error("LLM continuation failed: %s", exc)
            await self._emit(
                EventKind.ERROR, {"error": str(exc), "error_type": type(exc).__name__}
            )
            raise

    async def _emit(self, kind: EventKind, data: dict[str, Any]) -> None:
        if self._emitter is not None:
            await self._emitter.emit(OrchestrationEvent(kind=kind, data=data))

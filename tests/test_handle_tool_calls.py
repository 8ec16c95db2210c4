"""Tests for HandleToolCalls: permission gating, execution and ordering."""

from __future__ import annotations

import asyncio

import pytest

from codeh_agent.abort import AbortSignal
from codeh_agent.context import ToolExecutionStatus
from codeh_agent.events import EventEmitter, EventKind, OrchestrationEvent
from codeh_agent.handle_tool_calls import HandleToolCalls
from codeh_agent.permissions import PermissionResult, ToolPermissionContext
from codeh_agent.tools import (
    FunctionTool,
    ToolDefinition,
    ToolExecutionResult,
    ToolParameter,
    ToolRegistry,
)
from codeh_llm.types import ToolCall

# ================================================================== #
# Fakes
# ================================================================== #


class FakeGate:
    """Scriptable PermissionGate that records what it was asked."""

    def __init__(
        self,
        *,
        deny: set[str] | None = None,
        pre_approved: set[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.deny = deny or set()
        self.pre_approved = pre_approved or set()
        self.reason = reason
        self.requests: list[ToolPermissionContext] = []
        self.pre_approval_checks: list[str] = []
        self.log: list[str] | None = None

    def has_pre_approval(self, tool_name: str) -> bool:
        self.pre_approval_checks.append(tool_name)
        return tool_name in self.pre_approved

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        self.requests.append(context)
        if self.log is not None:
            self.log.append(f"prompt:{context.tool_call.name}")
        await asyncio.sleep(0)
        approved = context.tool_call.name not in self.deny
        return PermissionResult(approved=approved, reason=None if approved else self.reason)

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if always_allow:
            self.pre_approved.add(tool_name)

    async def clear_preferences(self) -> None:
        self.pre_approved.clear()


class RaisingGate(FakeGate):
    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        raise ConnectionError("UI went away")


class BlockingGate(FakeGate):
    """Never answers; only an abort gets a call past it."""

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        self.requests.append(context)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class BrokenTool:
    """ToolExecutor whose validator or definition can be made to raise."""

    def __init__(self, name: str, *, fail_validation: bool = False) -> None:
        self.definition = ToolDefinition(name, f"The {name} tool")
        self.fail_validation = fail_validation
        self.broken_definition = False

    def get_definition(self) -> ToolDefinition:
        if self.broken_definition:
            raise RuntimeError("definition unavailable")
        return self.definition

    def validate_parameters(self, arguments: dict) -> bool:
        if self.fail_validation:
            raise KeyError("schema")
        return True

    async def execute(self, arguments: dict) -> ToolExecutionResult:
        return ToolExecutionResult.ok("ran")


def _call(name: str, call_id: str | None = None, **arguments) -> ToolCall:
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)


def _recording_tool(name: str, log: list[str], output: str | None = None) -> FunctionTool:
    async def run(**kwargs) -> ToolExecutionResult:
        log.append(f"exec:{name}")
        await asyncio.sleep(0)
        return ToolExecutionResult.ok(output if output is not None else f"{name} done")

    return FunctionTool(ToolDefinition(name, f"The {name} tool"), run)


def _registry(*tools: FunctionTool) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_many(list(tools))
    return registry


# ================================================================== #
# Single-call semantics
# ================================================================== #


class TestApprovalAndDenial:
    @pytest.mark.asyncio
    async def test_approval_executes(self):
        log: list[str] = []
        gate = FakeGate()
        handler = HandleToolCalls(_registry(_recording_tool("read_file", log)), gate)

        result = await handler.execute([_call("read_file", path="a.txt")])

        ctx = result.contexts[0]
        assert ctx.status == ToolExecutionStatus.COMPLETED
        assert ctx.is_completed()
        assert ctx.result.output == "read_file done"
        assert ctx.permission_granted_at is not None
        assert ctx.execution_started_at is not None
        assert ctx.execution_started_at <= ctx.execution_completed_at
        assert log == ["exec:read_file"]
        assert result.all_approved and result.all_completed

    @pytest.mark.asyncio
    async def test_permission_context_carries_call_and_description(self):
        gate = FakeGate()
        handler = HandleToolCalls(_registry(_recording_tool("read_file", [])), gate)
        call = _call("read_file", path="a.txt")

        await handler.execute([call], conversation_context="user asked to read a.txt")

        assert gate.requests[0].tool_call == call
        assert gate.requests[0].tool_description == "The read_file tool"
        assert gate.requests[0].conversation_context == "user asked to read a.txt"

    @pytest.mark.asyncio
    async def test_denial_skips_execution(self):
        log: list[str] = []
        gate = FakeGate(deny={"shell"}, reason="too risky")
        handler = HandleToolCalls(_registry(_recording_tool("shell", log)), gate)

        result = await handler.execute([_call("shell", command="rm -rf /")])

        ctx = result.contexts[0]
        assert ctx.is_rejected()
        assert ctx.rejection_reason == "too risky"
        assert ctx.result is None
        assert ctx.execution_started_at is None
        assert ctx.execution_completed_at is None
        assert ctx.permission_granted_at is None
        assert log == []
        assert result.all_approved is False
        assert result.all_completed is False

    @pytest.mark.asyncio
    async def test_pre_approval_bypasses_prompt(self):
        log: list[str] = []
        gate = FakeGate(pre_approved={"grep"})
        handler = HandleToolCalls(_registry(_recording_tool("grep", log)), gate)

        result = await handler.execute([_call("grep", pattern="TODO")])

        assert gate.requests == []
        assert gate.pre_approval_checks == ["grep"]
        assert result.contexts[0].is_completed()
        assert result.contexts[0].permission_granted_at is not None
        assert log == ["exec:grep"]

    @pytest.mark.asyncio
    async def test_pre_approval_checked_per_call(self):
        gate = FakeGate(pre_approved={"grep"})
        handler = HandleToolCalls(
            _registry(_recording_tool("grep", []), _recording_tool("read_file", [])), gate
        )

        await handler.execute([_call("grep"), _call("read_file"), _call("grep", "call_2")])

        assert gate.pre_approval_checks == ["grep", "read_file", "grep"]
        assert [r.tool_call.name for r in gate.requests] == ["read_file"]


# ================================================================== #
# Failures
# ================================================================== #


class TestFailures:
    @pytest.mark.asyncio
    async def test_tool_not_found_skips_gate(self):
        gate = FakeGate()
        handler = HandleToolCalls(ToolRegistry(), gate)

        result = await handler.execute([_call("ghost")])

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "Tool not found: ghost"
        assert gate.requests == []
        assert gate.pre_approval_checks == []
        assert result.all_approved is True
        assert result.all_completed is False

    @pytest.mark.asyncio
    async def test_raising_tool_fails_and_batch_continues(self):
        log: list[str] = []

        async def broken(**_: object) -> str:
            raise RuntimeError("boom")

        registry = _registry(
            FunctionTool(ToolDefinition("broken", "Always raises"), broken),
            _recording_tool("read_file", log),
        )
        handler = HandleToolCalls(registry, FakeGate())

        result = await handler.execute([_call("broken"), _call("read_file")])

        assert result.contexts[0].is_failed()
        assert result.contexts[0].error == "boom"
        assert result.contexts[0].execution_started_at is not None
        assert result.contexts[1].is_completed()
        assert log == ["exec:read_file"]

    @pytest.mark.asyncio
    async def test_unsuccessful_result_is_completed(self):
        async def shell(**_: object) -> ToolExecutionResult:
            return ToolExecutionResult.failure("exit code 1", output="no such file")

        handler = HandleToolCalls(
            _registry(FunctionTool(ToolDefinition("shell", "Run"), shell)), FakeGate()
        )
        result = await handler.execute([_call("shell")])

        ctx = result.contexts[0]
        assert ctx.is_completed()
        assert ctx.result.success is False
        assert result.all_completed is True

    @pytest.mark.asyncio
    async def test_invalid_parameters(self):
        log: list[str] = []

        async def read_file(path: str) -> str:
            log.append(path)
            return "x"

        definition = ToolDefinition(
            "read_file", "Read", [ToolParameter("path", "string", required=True)]
        )
        handler = HandleToolCalls(
            _registry(FunctionTool(definition, read_file)), FakeGate()
        )

        result = await handler.execute([_call("read_file")])

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "Invalid parameters for tool 'read_file'"
        assert ctx.permission_granted_at is not None
        assert log == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(**_: object) -> str:
            await asyncio.sleep(5)
            return "late"

        handler = HandleToolCalls(
            _registry(FunctionTool(ToolDefinition("slow", "Slow"), slow)),
            FakeGate(),
            tool_timeout=0.05,
        )
        result = await handler.execute([_call("slow")])

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "Tool 'slow' timed out after 0.05s"

    @pytest.mark.parametrize("tool_timeout", [None, 30.0])
    @pytest.mark.asyncio
    async def test_tool_own_timeout_error_keeps_message(self, tool_timeout):
        async def query(**_: object) -> str:
            raise TimeoutError("connect to db timed out")

        handler = HandleToolCalls(
            _registry(FunctionTool(ToolDefinition("query", "Query"), query)),
            FakeGate(),
            tool_timeout=tool_timeout,
        )
        result = await handler.execute([_call("query")])

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "connect to db timed out"

    @pytest.mark.asyncio
    async def test_raising_validator_fails_and_batch_continues(self):
        log: list[str] = []
        handler = HandleToolCalls(
            _registry(BrokenTool("bad", fail_validation=True), _recording_tool("ok", log)),
            FakeGate(),
        )

        result = await handler.execute([_call("bad"), _call("ok")])

        assert [c.status for c in result.contexts] == [
            ToolExecutionStatus.FAILED,
            ToolExecutionStatus.COMPLETED,
        ]
        assert result.contexts[0].error == (
            "Parameter validation failed for tool 'bad': 'schema'"
        )
        assert log == ["exec:ok"]

    @pytest.mark.asyncio
    async def test_broken_definition_still_asks_permission(self):
        tool = BrokenTool("odd")
        registry = _registry(tool)
        tool.broken_definition = True
        gate = FakeGate()

        result = await HandleToolCalls(registry, gate).execute([_call("odd")])

        assert result.contexts[0].is_completed()
        assert gate.requests[0].tool_description is None

    @pytest.mark.asyncio
    async def test_unparseable_arguments_fail_before_permission(self):
        log: list[str] = []
        gate = FakeGate()
        handler = HandleToolCalls(_registry(_recording_tool("write_file", log)), gate)
        call = ToolCall(id="c1", name="write_file", arguments='{"path": "a.txt",')

        result = await handler.execute([call])

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error.startswith("Invalid arguments for tool 'write_file': ")
        assert "not valid JSON" in ctx.error
        assert gate.requests == []
        assert log == []

    @pytest.mark.asyncio
    async def test_gate_error_rejects(self):
        log: list[str] = []
        handler = HandleToolCalls(_registry(_recording_tool("shell", log)), RaisingGate())

        result = await handler.execute([_call("shell")])

        ctx = result.contexts[0]
        assert ctx.is_rejected()
        assert ctx.rejection_reason == "Permission request failed: UI went away"
        assert log == []

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self):
        handler = HandleToolCalls(ToolRegistry(), FakeGate())
        with pytest.raises(ValueError):
            await handler.execute([])
        with pytest.raises(ValueError):
            await handler.execute_parallel([])


# ================================================================== #
# Ordering
# ================================================================== #


class TestSequentialOrdering:
    @pytest.mark.asyncio
    async def test_order_preserved_under_partial_approval(self):
        log: list[str] = []
        gate = FakeGate(deny={"b"})
        gate.log = log
        handler = HandleToolCalls(
            _registry(
                _recording_tool("a", log), _recording_tool("b", log), _recording_tool("c", log)
            ),
            gate,
        )

        result = await handler.execute([_call("a"), _call("b"), _call("c")])

        assert [c.tool_call.name for c in result.contexts] == ["a", "b", "c"]
        assert [c.status for c in result.contexts] == [
            ToolExecutionStatus.COMPLETED,
            ToolExecutionStatus.REJECTED,
            ToolExecutionStatus.COMPLETED,
        ]
        # Each prompt waits for the previous call to finish.
        assert log == ["prompt:a", "exec:a", "prompt:b", "prompt:c", "exec:c"]
        assert result.all_approved is False
        assert result.all_completed is False

    @pytest.mark.asyncio
    async def test_three_approved_calls(self):
        registry = _registry(*(_recording_tool(n, [], output="X") for n in ("t1", "t2", "t3")))
        handler = HandleToolCalls(registry, FakeGate())

        result = await handler.execute([_call("t1"), _call("t2"), _call("t3")])

        assert result.all_approved is True
        assert result.all_completed is True
        assert len(result.contexts) == 3
        assert all(c.result.output == "X" for c in result.contexts)
        assert all(c.result.success for c in result.contexts)


class TestParallel:
    @pytest.mark.asyncio
    async def test_all_calls_in_flight_together(self):
        active = 0
        peak = 0

        async def work(**_: object) -> str:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.05)
            active -= 1
            return "ok"

        registry = _registry(
            *(FunctionTool(ToolDefinition(n, n), work) for n in ("a", "b", "c"))
        )
        handler = HandleToolCalls(registry, FakeGate())

        result = await handler.execute_parallel([_call("a"), _call("b"), _call("c")])

        assert peak == 3
        assert result.all_completed is True

    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        finished: list[str] = []

        def make(name: str, delay: float) -> FunctionTool:
            async def run(**_: object) -> str:
                await asyncio.sleep(delay)
                finished.append(name)
                return name

            return FunctionTool(ToolDefinition(name, name), run)

        registry = _registry(make("slow", 0.06), make("medium", 0.03), make("fast", 0.0))
        handler = HandleToolCalls(registry, FakeGate())

        result = await handler.execute_parallel(
            [_call("slow"), _call("medium"), _call("fast")]
        )

        assert finished == ["fast", "medium", "slow"]
        assert [c.result.output for c in result.contexts] == ["slow", "medium", "fast"]

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self):
        async def broken(**_: object) -> str:
            raise ValueError("bad input")

        registry = _registry(
            _recording_tool("ok", []),
            _recording_tool("denied", []),
            FunctionTool(ToolDefinition("broken", "b"), broken),
        )
        handler = HandleToolCalls(registry, FakeGate(deny={"denied"}))

        result = await handler.execute_parallel(
            [_call("ok"), _call("denied"), _call("broken"), _call("missing")]
        )

        assert [c.status for c in result.contexts] == [
            ToolExecutionStatus.COMPLETED,
            ToolExecutionStatus.REJECTED,
            ToolExecutionStatus.FAILED,
            ToolExecutionStatus.FAILED,
        ]
        assert result.contexts[2].error == "bad input"
        assert result.contexts[3].error == "Tool not found: missing"


# ================================================================== #
# Cancellation
# ================================================================== #


class TestAbort:
    @pytest.mark.asyncio
    async def test_already_aborted(self):
        log: list[str] = []
        signal = AbortSignal()
        signal.set()
        gate = FakeGate()
        handler = HandleToolCalls(_registry(_recording_tool("a", log)), gate)

        result = await handler.execute([_call("a")], abort_signal=signal)

        assert result.contexts[0].is_failed()
        assert result.contexts[0].error == "cancelled"
        assert gate.requests == []
        assert log == []

    @pytest.mark.asyncio
    async def test_abort_during_execution(self):
        started = asyncio.Event()

        async def hang(**_: object) -> str:
            started.set()
            await asyncio.sleep(10)
            return "never"

        signal = AbortSignal()
        handler = HandleToolCalls(
            _registry(FunctionTool(ToolDefinition("hang", "h"), hang)), FakeGate()
        )

        async def abort_soon() -> None:
            await started.wait()
            signal.set("user pressed escape")

        result, _ = await asyncio.gather(
            handler.execute([_call("hang")], abort_signal=signal), abort_soon()
        )

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "cancelled"
        assert ctx.execution_started_at is not None

    @pytest.mark.asyncio
    async def test_abort_while_waiting_for_permission(self):
        signal = AbortSignal()
        gate = BlockingGate()
        handler = HandleToolCalls(_registry(_recording_tool("a", [])), gate)

        async def abort_soon() -> None:
            while not gate.requests:
                await asyncio.sleep(0)
            signal.set()

        result, _ = await asyncio.gather(
            handler.execute([_call("a")], abort_signal=signal), abort_soon()
        )

        ctx = result.contexts[0]
        assert ctx.is_failed()
        assert ctx.error == "cancelled"


# ================================================================== #
# Events
# ================================================================== #


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self):
        events: list[OrchestrationEvent] = []
        emitter = EventEmitter()
        emitter.on(events.append)
        handler = HandleToolCalls(
            _registry(_recording_tool("a", []), _recording_tool("b", [])),
            FakeGate(deny={"b"}, reason="nope"),
            event_emitter=emitter,
        )

        await handler.execute([_call("a"), _call("b")])

        kinds = [e.kind for e in events]
        assert kinds == [
            EventKind.TOOL_PERMISSION_REQUESTED,
            EventKind.TOOL_CALL_START,
            EventKind.TOOL_CALL_END,
            EventKind.TOOL_PERMISSION_REQUESTED,
            EventKind.TOOL_REJECTED,
            EventKind.TOOL_CALL_END,
        ]
        assert events[2].data["status"] == "completed"
        assert events[2].data["output"] == "a done"
        assert events[4].data["reason"] == "nope"
        assert events[5].data["status"] == "rejected"
        assert events[5].data["reason"] == "nope"

    @pytest.mark.asyncio
    async def test_every_call_ends_once(self):
        ends: list[str] = []
        emitter = EventEmitter()
        emitter.on(
            lambda e: ends.append(e.data["call_id"])
            if e.kind == EventKind.TOOL_CALL_END
            else None
        )
        handler = HandleToolCalls(
            _registry(_recording_tool("a", []), _recording_tool("b", [])),
            FakeGate(deny={"b"}),
            event_emitter=emitter,
        )

        await handler.execute_parallel(
            [_call("a", "c1"), _call("b", "c2"), _call("missing", "c3")]
        )

        assert sorted(ends) == ["c1", "c2", "c3"]

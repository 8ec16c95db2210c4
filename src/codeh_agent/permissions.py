"""Permission gates deciding whether a tool call may execute.

``HandleToolCalls`` consults a ``PermissionGate`` for every call:
``has_pre_approval()`` first (synchronous, never prompts), then
``request_permission()`` which may suspend indefinitely while a human
decides.

Implementations:
- ConfigurablePermissionHandler: policy-driven (auto-approve, require
  pre-approval, deny by default), with a dangerous-tool list
- InteractivePermissionHandler: delegates to a UI callback and remembers
  "always allow" answers
- ConsolePermissionPrompt: a UI callback prompting on stdin
- HybridPermissionHandler: switches between the two above according to a
  PermissionModeManager (``mvp`` vs ``interactive``)

Pre-approval sets are shared between concurrent calls of a parallel
batch, so every mutation and read goes through a lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal, Protocol, runtime_checkable

from codeh_llm.types import ToolCall

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Contract
# ------------------------------------------------------------------ #


@dataclass
class PermissionResult:
    """A permission decision.

    ``remember_choice`` asks the gate to update its pre-approval cache; it
    never changes whether the current call executes.
    """

    approved: bool
    reason: str | None = None
    remember_choice: bool = False


@dataclass
class ToolPermissionContext:
    """Everything a UI needs to render a permission prompt."""

    tool_call: ToolCall
    tool_description: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    conversation_context: str | None = None


@runtime_checkable
class PermissionGate(Protocol):
    """Approval policy consulted before each tool execution."""

    def has_pre_approval(self, tool_name: str) -> bool:
        """True if *tool_name* may run without prompting."""
        ...

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        """Ask for a decision. May wait indefinitely for user input."""
        ...

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None: ...

    async def clear_preferences(self) -> None: ...


PermissionCallback = Callable[[ToolPermissionContext], Awaitable[PermissionResult]]


class _PreApprovalSet:
    """Thread-safe set of pre-approved tool names."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._names: set[str] = set(names)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def add(self, name: str) -> None:
        with self._lock:
            self._names.add(name)

    def discard(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def clear(self) -> None:
        with self._lock:
            self._names.clear()

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._names)


# ------------------------------------------------------------------ #
# Policy-driven handler
# ------------------------------------------------------------------ #


class PermissionMode(StrEnum):
    """Policy applied to tools that are not pre-approved."""

    AUTO_APPROVE = "auto_approve"
    REQUIRE_APPROVAL = "require_approval"
    DENY_BY_DEFAULT = "deny_by_default"


DANGEROUS_TOOLS: frozenset[str] = frozenset({"shell", "file_write", "file_delete", "execute_code"})


@dataclass
class PermissionConfig:
    """Configuration for ``ConfigurablePermissionHandler``."""

    mode: PermissionMode = PermissionMode.AUTO_APPROVE
    pre_approved_tools: list[str] = field(default_factory=list)
    dangerous_tools_require_approval: bool = True
    dangerous_tools: frozenset[str] = DANGEROUS_TOOLS


class ConfigurablePermissionHandler:
    """Non-interactive gate driven by ``PermissionConfig``.

    Decision order: pre-approved → approved; dangerous tool (when
    ``dangerous_tools_require_approval``) → denied; otherwise the mode.
    """

    def __init__(self, config: PermissionConfig | None = None) -> None:
        self._config = config or PermissionConfig()
        self._pre_approved = _PreApprovalSet(self._config.pre_approved_tools)

    @property
    def mode(self) -> PermissionMode:
        return self._config.mode

    def set_mode(self, mode: PermissionMode) -> None:
        self._config.mode = mode

    def get_config(self) -> PermissionConfig:
        return PermissionConfig(
            mode=self._config.mode,
            pre_approved_tools=self._pre_approved.snapshot(),
            dangerous_tools_require_approval=self._config.dangerous_tools_require_approval,
            dangerous_tools=self._config.dangerous_tools,
        )

    def has_pre_approval(self, tool_name: str) -> bool:
        return tool_name in self._pre_approved

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        result = self._decide(context.tool_call.name)
        _log_decision(context, result)
        return result

    def _decide(self, tool_name: str) -> PermissionResult:
        if tool_name in self._pre_approved:
            return PermissionResult(approved=True, reason="Pre-approved tool")

        if (
            self._config.dangerous_tools_require_approval
            and tool_name in self._config.dangerous_tools
        ):
            return PermissionResult(
                approved=False,
                reason=(
                    "Dangerous tool requires explicit approval. "
                    "Add it to pre_approved_tools to enable."
                ),
            )

        match self._config.mode:
            case PermissionMode.AUTO_APPROVE:
                return PermissionResult(approved=True, reason="Auto-approved")
            case PermissionMode.REQUIRE_APPROVAL:
                return PermissionResult(
                    approved=False,
                    reason="Tool requires pre-approval. Add it to pre_approved_tools to enable.",
                )
            case PermissionMode.DENY_BY_DEFAULT:
                return PermissionResult(
                    approved=False,
                    reason="Permission denied by default. Change mode or pre-approve the tool.",
                )
        return PermissionResult(approved=False, reason="Unknown permission mode")

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if always_allow:
            self._pre_approved.add(tool_name)
        else:
            self._pre_approved.discard(tool_name)

    async def clear_preferences(self) -> None:
        self._pre_approved.clear()


def _log_decision(context: ToolPermissionContext, result: PermissionResult) -> None:
    logger.info(
        "Tool permission %s: tool=%s reason=%s",
        "approved" if result.approved else "denied",
        context.tool_call.name,
        result.reason or "-",
    )
    logger.debug(
        "Tool permission arguments for %s: %s",
        context.tool_call.name,
        json.dumps(context.tool_call.arguments, default=str),
    )


# ------------------------------------------------------------------ #
# Interactive handler
# ------------------------------------------------------------------ #


class InteractivePermissionHandler:
    """Delegates each decision to a UI callback.

    The presentation layer installs the callback with ``set_ui_callback``.
    Without one, calls are approved with a warning so headless runs do
    not hang. An approval with ``remember_choice`` adds the tool to the
    pre-approved set.
    """

    def __init__(self, ui_callback: PermissionCallback | None = None) -> None:
        self._ui_callback = ui_callback
        self._pre_approved = _PreApprovalSet()

    def set_ui_callback(self, callback: PermissionCallback | None) -> None:
        self._ui_callback = callback

    def has_pre_approval(self, tool_name: str) -> bool:
        return tool_name in self._pre_approved

    def get_pre_approved_tools(self) -> list[str]:
        return self._pre_approved.snapshot()

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        name = context.tool_call.name
        if self.has_pre_approval(name):
            return PermissionResult(approved=True, reason="Pre-approved by user preference")

        if self._ui_callback is None:
            logger.warning("No permission UI callback registered; auto-approving %s", name)
            return PermissionResult(approved=True, reason="No UI callback available")

        logger.debug("Requesting permission for tool %s", name)
        result = await self._ui_callback(context)
        _log_decision(context, result)

        if result.approved and result.remember_choice:
            await self.save_permission_preference(name, True)
        return result

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if always_allow:
            self._pre_approved.add(tool_name)
            logger.info("Added %s to pre-approved tools", tool_name)
        else:
            self._pre_approved.discard(tool_name)
            logger.info("Removed %s from pre-approved tools", tool_name)

    async def clear_preferences(self) -> None:
        self._pre_approved.clear()
        logger.info("Cleared all permission preferences")


class ConsolePermissionPrompt:
    """UI callback that asks on stdin: ``y`` (yes), ``a`` (always), ``n`` (no).

    ``input()`` runs in a worker thread so the event loop keeps serving
    other calls of a parallel batch.
    """

    def __init__(self, input_func: Callable[[str], str] = input) -> None:
        self._input = input_func

    async def __call__(self, context: ToolPermissionContext) -> PermissionResult:
        answer = await asyncio.to_thread(self._input, self.render(context))
        match answer.strip().lower():
            case "y" | "yes":
                return PermissionResult(approved=True, reason="Approved by user")
            case "a" | "always":
                return PermissionResult(
                    approved=True, reason="Always allowed by user", remember_choice=True
                )
            case _:
                return PermissionResult(approved=False, reason="User rejected")

    @staticmethod
    def render(context: ToolPermissionContext) -> str:
        call = context.tool_call
        lines = [f"\n[TOOL PERMISSION] {call.name}"]
        if context.tool_description:
            lines.append(context.tool_description)
        lines.append(f"Arguments: {json.dumps(call.arguments, indent=2, default=str)}")
        lines.append("Allow? [y]es / [a]lways / [n]o\n> ")
        return "\n".join(lines)


# ------------------------------------------------------------------ #
# Mode switching
# ------------------------------------------------------------------ #

PermissionModeName = Literal["mvp", "interactive"]
ModeChangeListener = Callable[[PermissionModeName], None]


class PermissionModeManager:
    """Runtime switch between ``mvp`` (no prompts) and ``interactive``."""

    def __init__(self, mode: PermissionModeName = "mvp") -> None:
        self._mode: PermissionModeName = mode
        self._listeners: list[ModeChangeListener] = []

    @property
    def mode(self) -> PermissionModeName:
        return self._mode

    def set_mode(self, mode: PermissionModeName) -> None:
        if mode == self._mode:
            return
        self._mode = mode
        logger.info("Permission mode changed to %s", mode)
        for listener in list(self._listeners):
            listener(mode)

    def toggle(self) -> None:
        self.set_mode("interactive" if self._mode == "mvp" else "mvp")

    def is_mvp_mode(self) -> bool:
        return self._mode == "mvp"

    def is_interactive_mode(self) -> bool:
        return self._mode == "interactive"

    def add_listener(self, listener: ModeChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ModeChangeListener) -> None:
        self._listeners = [x for x in self._listeners if x != listener]


class HybridPermissionHandler:
    """Routes to an auto-approving or an interactive handler by mode.

    In ``mvp`` mode every tool counts as pre-approved and preferences are
    not saved.
    """

    def __init__(
        self,
        mode_manager: PermissionModeManager,
        interactive: InteractivePermissionHandler | None = None,
    ) -> None:
        self._modes = mode_manager
        self._simple = ConfigurablePermissionHandler(
            PermissionConfig(
                mode=PermissionMode.AUTO_APPROVE,
                dangerous_tools_require_approval=False,
            )
        )
        self._interactive = interactive or InteractivePermissionHandler()

    @property
    def interactive_handler(self) -> InteractivePermissionHandler:
        return self._interactive

    def has_pre_approval(self, tool_name: str) -> bool:
        if self._modes.is_interactive_mode():
            return self._interactive.has_pre_approval(tool_name)
        return True

    async def request_permission(self, context: ToolPermissionContext) -> PermissionResult:
        if self._modes.is_mvp_mode():
            return await self._simple.request_permission(context)
        return await self._interactive.request_permission(context)

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if not self._modes.is_interactive_mode():
            logger.warning("Permission preferences are only kept in interactive mode")
            return
        await self._interactive.save_permission_preference(tool_name, always_allow)

    async def clear_preferences(self) -> None:
        await self._interactive.clear_preferences()

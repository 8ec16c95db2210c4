"""codeh tool orchestration core.

Permission-gated tool execution and the agentic loop that feeds results
back to the model.
"""

from codeh_agent.abort import AbortSignal, run_abortable
from codeh_agent.context import ToolExecutionContext, ToolExecutionStatus
from codeh_agent.errors import CodehError, InvalidTransitionError
from codeh_agent.events import EventEmitter, EventKind, OrchestrationEvent
from codeh_agent.formatting import ToolResultFormatter, build_feedback_message
from codeh_agent.handle_tool_calls import HandleToolCalls, HandleToolCallsResult
from codeh_agent.history import (
    ConversationHistory,
    HistoryRepository,
    InMemoryHistoryRepository,
)
from codeh_agent.orchestrator import (
    OrchestrationResult,
    OrchestratorConfig,
    ToolExecutionOrchestrator,
)
from codeh_agent.permissions import (
    DANGEROUS_TOOLS,
    ConfigurablePermissionHandler,
    ConsolePermissionPrompt,
    HybridPermissionHandler,
    InteractivePermissionHandler,
    PermissionConfig,
    PermissionGate,
    PermissionMode,
    PermissionModeManager,
    PermissionResult,
    ToolPermissionContext,
)
from codeh_agent.tools import (
    FunctionTool,
    ToolDefinition,
    ToolExecutionResult,
    ToolExecutor,
    ToolParameter,
    ToolRegistry,
)
from codeh_agent.turn import Turn

__all__ = [
    # Orchestration
    "ToolExecutionOrchestrator",
    "OrchestratorConfig",
    "OrchestrationResult",
    "HandleToolCalls",
    "HandleToolCallsResult",
    "Turn",
    # Execution state
    "ToolExecutionContext",
    "ToolExecutionStatus",
    # Tools
    "FunctionTool",
    "ToolDefinition",
    "ToolExecutionResult",
    "ToolExecutor",
    "ToolParameter",
    "ToolRegistry",
    # Permissions
    "PermissionGate",
    "PermissionResult",
    "ToolPermissionContext",
    "PermissionMode",
    "PermissionConfig",
    "DANGEROUS_TOOLS",
    "ConfigurablePermissionHandler",
    "InteractivePermissionHandler",
    "ConsolePermissionPrompt",
    "PermissionModeManager",
    "HybridPermissionHandler",
    # History
    "HistoryRepository",
    "ConversationHistory",
    "InMemoryHistoryRepository",
    # Formatting
    "ToolResultFormatter",
    "build_feedback_message",
    # Events
    "EventEmitter",
    "EventKind",
    "OrchestrationEvent",
    # Abort
    "AbortSignal",
    "run_abortable",
    # Errors
    "CodehError",
    "InvalidTransitionError",
]

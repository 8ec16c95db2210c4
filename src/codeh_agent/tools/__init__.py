"""Tool contract and registry."""

from codeh_agent.tools.base import (
    FunctionTool,
    ToolDefinition,
    ToolExecutionResult,
    ToolExecutor,
    ToolParameter,
    validate_arguments,
)
from codeh_agent.tools.registry import ToolRegistry, to_api_format, to_openai_format

__all__ = [
    "FunctionTool",
    "ToolDefinition",
    "ToolExecutionResult",
    "ToolExecutor",
    "ToolParameter",
    "ToolRegistry",
    "to_api_format",
    "to_openai_format",
    "validate_arguments",
]

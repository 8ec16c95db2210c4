"""Tool contract consumed by the orchestrator.

Concrete tools (shell, file edits, symbol navigation, ...) live outside
the core. Each one satisfies ``ToolExecutor``; the registry selects them
purely by name. ``FunctionTool`` is the stock variant wrapping an async
function.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# ------------------------------------------------------------------ #
# Definitions and results
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ToolParameter:
    """One named parameter of a tool. ``type`` is a JSON Schema type name."""

    name: str
    type: str
    description: str = ""
    required: bool = False
    default: Any = None


@dataclass(frozen=True)
class ToolDefinition:
    """Name, description and parameters advertised to the model."""

    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_json_schema(self) -> dict[str, Any]:
        """Parameters as a JSON Schema ``object``.

        ``required`` is omitted when no parameter is required.
        """
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.default is not None:
                prop["default"] = param.default
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of a tool that ran to completion.

    ``success=False`` is a tool-level failure (e.g. a shell command that
    exited non-zero), distinct from the orchestrator's ``failed`` state.
    """

    success: bool
    output: str
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def ok(cls, output: str, metadata: dict[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def failure(
        cls,
        error: str,
        output: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ToolExecutionResult:
        return cls(success=False, output=output, error=error, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
        }


@runtime_checkable
class ToolExecutor(Protocol):
    """What the registry stores for each tool name."""

    def get_definition(self) -> ToolDefinition: ...

    async def execute(self, arguments: dict[str, Any]) -> ToolExecutionResult:
        """Run the tool. May raise; the caller converts that to ``failed``."""
        ...

    def validate_parameters(self, arguments: dict[str, Any]) -> bool: ...


# ------------------------------------------------------------------ #
# Lightweight argument validation
# ------------------------------------------------------------------ #

# Maps JSON Schema type names to Python types for top-level checking.
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def validate_arguments(arguments: dict[str, Any], definition: ToolDefinition) -> str | None:
    """Check *arguments* against *definition*.

    Two top-level checks: every required parameter is present, and
    provided values match their declared type. Unknown keys and unknown
    type names are tolerated.

    Returns ``None`` when valid, otherwise an error message.
    """
    params = {p.name: p for p in definition.parameters}

    missing = [p.name for p in definition.parameters if p.required and p.name not in arguments]
    if missing:
        return f"Missing required argument(s): {', '.join(missing)}"

    for key, value in arguments.items():
        param = params.get(key)
        if param is None:
            continue
        expected = _JSON_TYPE_MAP.get(param.type)
        if expected is None:
            continue
        # isinstance(True, int) is True; JSON keeps them apart.
        if param.type in ("integer", "number") and isinstance(value, bool):
            return f"Argument '{key}' has type bool, expected {param.type}"
        if not isinstance(value, expected):
            return f"Argument '{key}' has type {type(value).__name__}, expected {param.type}"

    return None


# ------------------------------------------------------------------ #
# Function-backed tools
# ------------------------------------------------------------------ #

ToolFunc = Callable[..., Awaitable[ToolExecutionResult | str]]


class FunctionTool:
    """A ``ToolExecutor`` backed by an async function.

    The function receives the call arguments as keyword arguments. A plain
    string return value is wrapped in a successful result.

    Usage::

        async def read_file(path: str) -> str:
            return Path(path).read_text()

        tool = FunctionTool(
            ToolDefinition(
                name="read_file",
                description="Read a UTF-8 text file",
                parameters=[ToolParameter("path", "string", "File path", required=True)],
            ),
            read_file,
        )
    """

    def __init__(self, definition: ToolDefinition, func: ToolFunc) -> None:
        self._definition = definition
        self._func = func

    @property
    def name(self) -> str:
        return self._definition.name

    def get_definition(self) -> ToolDefinition:
        return self._definition

    def validate_parameters(self, arguments: dict[str, Any]) -> bool:
        return validate_arguments(arguments, self._definition) is None

    async def execute(self, arguments: dict[str, Any]) -> ToolExecutionResult:
        value = await self._func(**arguments)
        if isinstance(value, ToolExecutionResult):
            return value
        return ToolExecutionResult.ok(str(value))

    def __repr__(self) -> str:
        return f"FunctionTool({self._definition.name!r})"

"""Tool registry for the orchestration core.

Name → executor lookup, plus the catalog advertised to the LLM. The
registry never executes anything itself; ``HandleToolCalls`` does, after
the permission gate has been consulted.

The registry is read-only for the duration of an orchestration run.
"""

from __future__ import annotations

import logging
from typing import Any

from codeh_agent.tools.base import ToolDefinition, ToolExecutor
from codeh_llm.types import ToolSpec

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Definition conversion
# ------------------------------------------------------------------ #


def to_api_format(definition: ToolDefinition) -> ToolSpec:
    """Convert a definition to the provider-neutral ``ToolSpec``."""
    return ToolSpec(
        name=definition.name,
        description=definition.description,
        parameters=definition.to_json_schema(),
    )


def to_openai_format(definition: ToolDefinition) -> dict[str, Any]:
    """Function-calling shape used by OpenAI-compatible APIs."""
    spec = to_api_format(definition)
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


class ToolRegistry:
    """Registry of tool executors keyed by definition name.

    Registration order is preserved and is the order in which tools are
    advertised to the model. Registering a name twice replaces the
    earlier executor in place (last write wins).
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolExecutor] = {}

    def register(self, tool: ToolExecutor) -> None:
        """Register a tool. Overwrites if the name already exists."""
        name = tool.get_definition().name
        if name in self._tools:
            logger.debug("Replacing registered tool %s", name)
        self._tools[name] = tool

    def register_many(self, tools: list[ToolExecutor]) -> None:
        """Register multiple tools at once."""
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> None:
        """Remove a tool by name. No-op if not found."""
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_executor(self, name: str) -> ToolExecutor | None:
        """Look up a tool by name. ``None`` when it is not registered."""
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """All definitions, in registration order."""
        return [tool.get_definition() for tool in self._tools.values()]

    def api_definitions(self) -> list[ToolSpec]:
        """The catalog in the format sent with each LLM request."""
        return [to_api_format(d) for d in self.get_definitions()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

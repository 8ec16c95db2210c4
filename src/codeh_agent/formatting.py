"""Rendering of tool execution contexts for the model.

``ToolResultFormatter`` turns a finished ``ToolExecutionContext`` into
markdown, JSON or compact text. ``build_feedback_message`` picks the
wording the orchestrator sends back to the model for each terminal
state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from codeh_agent.context import ToolExecutionContext
from codeh_llm.types import Message


@dataclass(frozen=True)
class _Summary:
    metadata_key: str
    found: str
    fallback: str


# Tool-specific one-line summaries, driven by a count in the result metadata.
_SUMMARIES: dict[str, _Summary] = {
    "symbol_search": _Summary(
        "count", "Found {} symbol(s) matching the search criteria", "Symbol search completed"
    ),
    "find_references": _Summary(
        "count", "Found {} reference(s) to the symbol", "Reference search completed"
    ),
    "get_symbols_overview": _Summary(
        "symbol_count", "File contains {} symbol(s)", "Symbol overview retrieved"
    ),
    "find_file": _Summary(
        "file_count", "Found {} file(s) matching the pattern", "File search completed"
    ),
    "search_for_pattern": _Summary(
        "match_count", "Found {} match(es) for the pattern", "Pattern search completed"
    ),
}


def truncate_output(output: str, max_chars: int | None, head_ratio: float = 0.7) -> str:
    """Keep the head and tail of *output* within *max_chars* characters."""
    if max_chars is None or len(output) <= max_chars:
        return output
    head_size = int(max_chars * head_ratio)
    tail_size = max_chars - head_size
    head = output[:head_size]
    tail = output[-tail_size:] if tail_size > 0 else ""
    omitted = len(output) - head_size - tail_size
    return (
        f"{head}\n\n[WARNING: Tool output was truncated. {omitted:,} characters were "
        f"removed from the middle. Re-run the tool with more targeted parameters "
        f"to see specific parts.]\n\n{tail}"
    )


class ToolResultFormatter:
    """Standardizes tool results for consumption by the model.

    Args:
        max_output_chars: Tool output longer than this is truncated
            (head and tail kept). ``None`` disables truncation.
    """

    def __init__(self, max_output_chars: int | None = 30_000) -> None:
        self._max_output_chars = max_output_chars

    def standardize(self, context: ToolExecutionContext) -> dict[str, Any]:
        """The fields every rendering is built from."""
        result = context.result
        succeeded = context.is_completed() and result is not None and result.success
        started = context.execution_started_at or datetime.now(UTC)

        data: dict[str, Any] = {
            "tool": context.tool_call.name,
            "status": "success" if succeeded else "error",
            "timestamp": started.isoformat(),
            "summary": self._summarize(context),
        }
        if context.duration is not None:
            data["duration_ms"] = round(context.duration * 1000)
        if result is not None:
            data["output"] = truncate_output(result.output, self._max_output_chars)
            if result.metadata:
                data["metadata"] = dict(result.metadata)
        if not succeeded:
            error = context.error or context.rejection_reason
            if error is None and result is not None:
                error = result.error
            data["error"] = error or "Unknown error"
        return data

    def format_as_markdown(self, context: ToolExecutionContext) -> str:
        data = self.standardize(context)
        status = "Success" if data["status"] == "success" else "Error"

        lines = [f"## Tool: {data['tool']}", ""]
        lines.append(f"**Status**: {status}")
        time_line = f"**Time**: {data['timestamp']}"
        if "duration_ms" in data:
            time_line += f" ({data['duration_ms']}ms)"
        lines.extend([time_line, "", "### Summary", data["summary"], ""])

        if data.get("output"):
            lines.extend(["### Output", "```", data["output"], "```", ""])
        if "error" in data:
            lines.extend(["### Error", "```", data["error"], "```", ""])
        if data.get("metadata"):
            lines.append("### Metadata")
            for key, value in data["metadata"].items():
                lines.append(f"- **{key}**: {json.dumps(value, default=str)}")
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    def format_as_json(self, context: ToolExecutionContext) -> str:
        return json.dumps(self.standardize(context), indent=2, default=str)

    def format_as_text(self, context: ToolExecutionContext) -> str:
        data = self.standardize(context)
        mark = "ok" if data["status"] == "success" else "error"
        text = f"[{data['tool']}] {mark}\n{data['summary']}"
        if data.get("output"):
            text += f"\n\nOutput:\n{data['output']}"
        if "error" in data:
            text += f"\n\nError: {data['error']}"
        return text

    @staticmethod
    def _summarize(context: ToolExecutionContext) -> str:
        name = context.tool_call.name
        result = context.result
        if context.is_completed() and result is not None and result.success:
            summary = _SUMMARIES.get(name)
            if summary is None:
                return f"{name} executed successfully"
            count = (result.metadata or {}).get(summary.metadata_key)
            return summary.found.format(count) if count is not None else summary.fallback
        if context.is_failed():
            return f"Failed to execute {name}: {context.error or 'Unknown error'}"
        if context.is_rejected():
            return f"{name} was rejected"
        if context.is_completed() and result is not None:
            return f"{name} reported an error"
        return f"{name} is {context.status}"


def feedback_text(context: ToolExecutionContext, formatter: ToolResultFormatter) -> str:
    """Text reporting *context*'s outcome back to the model."""
    name = context.tool_call.name
    if context.is_completed() and context.result is not None:
        result = context.result
        if result.success:
            return formatter.format_as_markdown(context)
        detail = result.error or result.output or "Unknown error"
        return f'Tool "{name}" failed: {detail}'
    if context.is_rejected():
        text = f'Tool "{name}" was rejected by user.'
        if context.rejection_reason:
            text += f" Reason: {context.rejection_reason}"
        return text
    if context.is_failed():
        return f'Tool "{name}" failed: {context.error or "Unknown error"}'
    raise ValueError(f"Tool execution context {context.id} is not finished ({context.status})")


def build_feedback_message(
    context: ToolExecutionContext, formatter: ToolResultFormatter
) -> Message:
    """A ``tool`` role message answering *context*'s tool call."""
    return Message.tool_result(
        tool_call_id=context.tool_call.id,
        name=context.tool_call.name,
        content=feedback_text(context, formatter),
        metadata={"status": str(context.status), "context_id": context.id},
    )

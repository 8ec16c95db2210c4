"""Wire types shared between the orchestration core and LLM clients.

Every type here crosses the boundary to a provider adapter, so all of
them are Pydantic v2 models: validated on construction and trivially
serialisable for history persistence and logging.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Role(StrEnum):
    """Message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A structured request from the model to invoke one tool.

    ``id`` correlates the call with the provider's function-call id so the
    tool's feedback message can be matched back to it.

    Some providers deliver ``arguments`` as a JSON string. When that string
    is not a JSON object, ``arguments`` is left empty and
    ``arguments_error`` says why, so the call can be failed instead of
    running the tool with no arguments.
    """

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    arguments_error: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _parse_arguments(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        value = data.get("arguments")
        if value is None:
            return {**data, "arguments": {}}
        if not isinstance(value, str):
            return data
        if not value.strip():
            return {**data, "arguments": {}}
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            error = f"arguments are not valid JSON: {exc.msg}"
        else:
            if isinstance(parsed, dict):
                return {**data, "arguments": parsed}
            error = f"arguments must be a JSON object, got {type(parsed).__name__}"
        logger.warning("Tool call %s (%s): %s", data.get("name"), data.get("id"), error)
        return {**data, "arguments": {}, "arguments_error": error}


class Message(BaseModel):
    """A single conversation message."""

    id: str = Field(default_factory=lambda: _new_id("msg"))
    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    # TOOL messages only: the call this message answers
    tool_call_id: str | None = None
    name: str | None = None

    timestamp: float = Field(default_factory=time.time)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> Message:
        return cls(role=Role.USER, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def tool_result(
        cls,
        tool_call_id: str,
        name: str,
        content: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        return cls(
            role=Role.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata or {},
        )

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ToolSpec(BaseModel):
    """A tool as advertised to the model (JSON Schema parameters)."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class FinishReason(StrEnum):
    """Why the model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"


class Usage(BaseModel):
    """Token usage for one call, with aggregation via ``+``."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class ChatRequest(BaseModel):
    """Unified chat request handed to an ``ApiClient``."""

    messages: list[Message] = Field(default_factory=list)
    tools: list[ToolSpec] | None = None
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    """Unified chat response returned by an ``ApiClient``."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.STOP
    model: str = ""
    usage: Usage | None = None

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """The assistant message this response represents in history."""
        return Message.assistant(self.content, list(self.tool_calls))


class StreamChunk(BaseModel):
    """One incremental piece of a streamed response.

    ``done`` marks the final chunk; it may carry usage but no content.
    """

    content: str | None = None
    done: bool = False
    usage: Usage | None = None

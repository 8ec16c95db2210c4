"""A conversational turn: one request and the assistant's response."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from codeh_llm.types import Message, ToolCall


@dataclass(frozen=True)
class Turn:
    """One request/response exchange, possibly carrying tool calls.

    Immutable; the ``with_*`` helpers return updated copies.
    """

    request: Message
    response: Message | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, request: Message) -> Turn:
        return cls(request=request)

    def with_response(self, response: Message) -> Turn:
        return dataclasses.replace(self, response=response)

    def with_tool_calls(self, tool_calls: list[ToolCall]) -> Turn:
        return dataclasses.replace(self, tool_calls=list(tool_calls))

    def with_metadata(self, **metadata: Any) -> Turn:
        return dataclasses.replace(self, metadata={**self.metadata, **metadata})

    @property
    def requested_tool_calls(self) -> list[ToolCall]:
        """Tool calls carried by the assistant response."""
        if self.response is None:
            return []
        return list(self.response.tool_calls)

    def is_complete(self) -> bool:
        return self.response is not None

    def has_tool_calls(self) -> bool:
        return bool(self.requested_tool_calls)

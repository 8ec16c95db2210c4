"""Conversation history consumed by the orchestrator.

The orchestrator only needs ``add_message`` and ``get_recent_messages``.
``InMemoryHistoryRepository`` additionally keeps whole conversations so a
session can start over, reload or list earlier ones within one process.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from codeh_llm.types import Message

logger = logging.getLogger(__name__)


@runtime_checkable
class HistoryRepository(Protocol):
    """Append-only message log."""

    async def add_message(self, message: Message) -> None: ...

    async def get_recent_messages(self, limit: int) -> list[Message]:
        """The last *limit* messages of the current conversation, oldest first."""
        ...


@dataclass
class ConversationHistory:
    """All messages of one conversation."""

    id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def add(self, message: Message) -> None:
        self.messages.append(message)
        self.updated_at = datetime.now(UTC)

    def recent(self, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])

    def __len__(self) -> int:
        return len(self.messages)


class InMemoryHistoryRepository:
    """Process-local ``HistoryRepository``.

    Messages go to the current conversation, created on first use.
    Nothing survives the process.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, ConversationHistory] = {}
        self._current: ConversationHistory | None = None

    @property
    def current(self) -> ConversationHistory:
        if self._current is None:
            self._current = ConversationHistory()
            self._conversations[self._current.id] = self._current
        return self._current

    async def add_message(self, message: Message) -> None:
        self.current.add(message)
        logger.debug(
            "Stored %s message %s in conversation %s",
            message.role,
            message.id,
            self.current.id,
        )

    async def get_recent_messages(self, limit: int) -> list[Message]:
        return self.current.recent(limit)

    async def start_new_conversation(self) -> ConversationHistory:
        self._current = ConversationHistory()
        self._conversations[self._current.id] = self._current
        logger.debug("Started conversation %s", self._current.id)
        return self._current

    async def save(self, conversation: ConversationHistory) -> None:
        self._conversations[conversation.id] = conversation

    async def load(self, conversation_id: str) -> ConversationHistory | None:
        """Load a conversation and make it current. ``None`` if unknown."""
        conversation = self._conversations.get(conversation_id)
        if conversation is not None:
            self._current = conversation
        return conversation

    async def load_latest(self) -> ConversationHistory | None:
        if not self._conversations:
            return None
        latest = max(self._conversations.values(), key=lambda c: c.updated_at)
        self._current = latest
        return latest

    async def list(self) -> list[ConversationHistory]:
        """All conversations, most recently updated first."""
        return sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)

    async def delete(self, conversation_id: str) -> bool:
        removed = self._conversations.pop(conversation_id, None)
        if removed is not None and removed is self._current:
            self._current = None
        return removed is not None

    async def clear(self) -> None:
        self._conversations.clear()
        self._current = None

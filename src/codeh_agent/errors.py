"""Errors raised by the orchestration core itself.

Tool failures and permission denials are never raised: they become
terminal ``ToolExecutionContext`` states. These exceptions signal
programming errors in callers.
"""

from __future__ import annotations


class CodehError(Exception):
    """Base error for the orchestration core."""


class InvalidTransitionError(CodehError):
    """A ``ToolExecutionContext`` was asked for an illegal state change."""

    def __init__(self, context_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Tool execution context {context_id} cannot move from '{current}' to '{requested}'"
        )
        self.context_id = context_id
        self.current = current
        self.requested = requested

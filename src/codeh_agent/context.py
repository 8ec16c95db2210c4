"""Lifecycle record of a single tool call.

A ``ToolExecutionContext`` is immutable: every transition returns a new
instance. The legal paths are::

    pending ──────────────► rejected
    pending ──────────────► failed      (tool not found / cancelled)
    pending ─► executing ─► completed
                        └─► failed

Terminal states never transition again.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from codeh_agent.errors import InvalidTransitionError
from codeh_agent.tools.base import ToolExecutionResult
from codeh_llm.types import ToolCall


class ToolExecutionStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = frozenset(
    {ToolExecutionStatus.REJECTED, ToolExecutionStatus.COMPLETED, ToolExecutionStatus.FAILED}
)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ToolExecutionContext:
    """State of one tool call as it moves through permission and execution.

    Invariants (upheld by the ``with_*`` transitions):

    - ``rejected``: no result and no execution timestamps.
    - ``completed``: ``result`` is set (its own ``success`` may be False)
      and ``execution_started_at <= execution_completed_at``.
    - ``failed``: ``error`` is set, ``result`` is not.
    - ``permission_granted_at`` is only set on the path to execution.
    """

    tool_call: ToolCall
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    id: str = field(default_factory=lambda: f"tool_ctx_{uuid.uuid4().hex[:12]}")
    permission_granted_at: datetime | None = None
    execution_started_at: datetime | None = None
    execution_completed_at: datetime | None = None
    result: ToolExecutionResult | None = None
    error: str | None = None
    rejection_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, tool_call: ToolCall) -> ToolExecutionContext:
        return cls(tool_call=tool_call, metadata={"created_at": _now().isoformat()})

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def _require(self, requested: str, *allowed: ToolExecutionStatus) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(self.id, self.status, requested)

    def with_permission_granted(self, at: datetime | None = None) -> ToolExecutionContext:
        """Record approval (interactive or pre-approved). Status stays pending."""
        self._require("permission_granted", ToolExecutionStatus.PENDING)
        return dataclasses.replace(self, permission_granted_at=at or _now())

    def with_permission_rejected(self, reason: str | None = None) -> ToolExecutionContext:
        self._require(ToolExecutionStatus.REJECTED, ToolExecutionStatus.PENDING)
        if self.permission_granted_at is not None:
            raise InvalidTransitionError(self.id, "approved", ToolExecutionStatus.REJECTED)
        return dataclasses.replace(
            self, status=ToolExecutionStatus.REJECTED, rejection_reason=reason
        )

    def with_execution_started(self, at: datetime | None = None) -> ToolExecutionContext:
        self._require(ToolExecutionStatus.EXECUTING, ToolExecutionStatus.PENDING)
        return dataclasses.replace(
            self,
            status=ToolExecutionStatus.EXECUTING,
            execution_started_at=at or _now(),
        )

    def with_result(self, result: ToolExecutionResult) -> ToolExecutionContext:
        """The executor resolved. Completed regardless of ``result.success``."""
        self._require(ToolExecutionStatus.COMPLETED, ToolExecutionStatus.EXECUTING)
        completed_at = _now()
        if self.execution_started_at is not None and completed_at < self.execution_started_at:
            completed_at = self.execution_started_at
        return dataclasses.replace(
            self,
            status=ToolExecutionStatus.COMPLETED,
            result=result,
            execution_completed_at=completed_at,
        )

    def with_error(self, error: str) -> ToolExecutionContext:
        """Orchestration-level failure: not found, raised, timed out, cancelled."""
        self._require(
            ToolExecutionStatus.FAILED, ToolExecutionStatus.PENDING, ToolExecutionStatus.EXECUTING
        )
        return dataclasses.replace(
            self, status=ToolExecutionStatus.FAILED, error=error, result=None
        )

    def with_metadata(self, **metadata: Any) -> ToolExecutionContext:
        return dataclasses.replace(self, metadata={**self.metadata, **metadata})

    # ------------------------------------------------------------------ #
    # Predicates
    # ------------------------------------------------------------------ #

    def is_pending(self) -> bool:
        return self.status == ToolExecutionStatus.PENDING

    def is_executing(self) -> bool:
        return (
            self.status == ToolExecutionStatus.EXECUTING
            and self.execution_started_at is not None
            and self.execution_completed_at is None
        )

    def is_rejected(self) -> bool:
        return self.status == ToolExecutionStatus.REJECTED and self.execution_started_at is None

    def is_completed(self) -> bool:
        return self.status == ToolExecutionStatus.COMPLETED and self.result is not None

    def is_failed(self) -> bool:
        return self.status == ToolExecutionStatus.FAILED

    def is_finished(self) -> bool:
        return self.status in _TERMINAL

    @property
    def duration(self) -> float | None:
        """Execution time in seconds, when the tool ran to completion."""
        if self.execution_started_at and self.execution_completed_at:
            return (self.execution_completed_at - self.execution_started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "tool_call": self.tool_call.model_dump(),
            "status": str(self.status),
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "rejection_reason": self.rejection_reason,
            "permission_granted_at": _iso(self.permission_granted_at),
            "execution_started_at": _iso(self.execution_started_at),
            "execution_completed_at": _iso(self.execution_completed_at),
            "metadata": dict(self.metadata),
        }

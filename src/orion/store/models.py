"""
store/models.py — ORION Persistent + Ephemeral Data Models

Persistent records (Session, MemoryEntry, ToolDefinition, ToolExecution,
GuardrailLogEntry, SessionEvent) are owned by the store. Plan, PlanStep and
StepOutcome live only for the duration of one turn.

Timestamps are POSIX floats (time.time()), matching the SQLite columns.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from orion.exceptions import StoreError


def _new_id() -> str:
    return str(uuid.uuid4())


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────

class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"


class MemoryType(str, Enum):
    CONTEXT = "context"
    SUMMARY = "summary"
    FACT = "fact"
    TOOL_RESULT = "tool_result"


class ToolKind(str, Enum):
    HTTP = "http"
    FUNCTION = "function"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class GuardAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    FILTER = "filter"
    MASK = "mask"


class EventType(str, Enum):
    AGENT_PLAN = "agent_plan"
    TOOL_CALL = "tool_call"
    ERROR = "error"
    STATUS_CHANGE = "status_change"


# Allowed forward transitions; terminal states have none.
_EXECUTION_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}


# ─────────────────────────────────────────────────────────────────────────────
# Persistent records
# ─────────────────────────────────────────────────────────────────────────────

class Session(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)
    ended_at: Optional[float] = None

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")


class MemoryEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    session_id: str
    type: MemoryType = MemoryType.CONTEXT
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)
    # Assigned by the store; strictly increasing in insertion order.
    seq: int = 0


class ToolSchema(BaseModel):
    """
    Execution recipe for a tool.

    http:     url template with {param} placeholders, method, headers,
              declared query_params / body_params.
    function: a single Python expression evaluated in the sandbox against
              `params`; `parameters` maps param name -> description.
    """
    type: str = ToolKind.HTTP.value
    url: str = ""
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    query_params: list[str] = Field(default_factory=list)
    body_params: list[str] = Field(default_factory=list)
    expression: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)


class ToolDefinition(BaseModel):
    name: str
    description: str = ""
    schema_: ToolSchema = Field(default_factory=ToolSchema, alias="schema")
    is_active: bool = True
    rate_limit: Optional[int] = None

    model_config = {"populate_by_name": True}

    @property
    def tool_schema(self) -> ToolSchema:
        return self.schema_

    def required_parameters(self) -> list[str]:
        """Parameters the caller must supply; sessionId is injected automatically."""
        s = self.schema_
        if s.type == ToolKind.FUNCTION.value:
            names = list(s.parameters)
        else:
            names = list(s.body_params) + list(s.query_params)
        return [n for n in dict.fromkeys(names) if n != "sessionId"]

    def declares_session_id(self) -> bool:
        s = self.schema_
        return (
            "sessionId" in s.body_params
            or "sessionId" in s.query_params
            or "sessionId" in s.parameters
            or "{sessionId}" in s.url
        )


class ToolExecution(BaseModel):
    id: str = Field(default_factory=_new_id)
    session_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    duration_ms: Optional[float] = None
    created_at: float = Field(default_factory=time.time)
    completed_at: Optional[float] = None

    def transition(self, new_status: ExecutionStatus) -> None:
        """Move to new_status, raising StoreError on an illegal transition."""
        if new_status not in _EXECUTION_TRANSITIONS[self.status]:
            raise StoreError(
                f"Illegal tool execution transition {self.status.value} -> "
                f"{new_status.value} for {self.id}"
            )
        self.status = new_status
        if new_status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED):
            self.completed_at = time.time()


class GuardrailLogEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    session_id: Optional[str] = None
    rule: str
    action: GuardAction
    input: str = ""
    reason: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)


class SessionEvent(BaseModel):
    id: str = Field(default_factory=_new_id)
    session_id: str
    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: float = Field(default_factory=time.time)


# ─────────────────────────────────────────────────────────────────────────────
# Ephemeral (per-turn) models
# ─────────────────────────────────────────────────────────────────────────────

class PlanStep(BaseModel):
    action: str
    tool: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""


class Plan(BaseModel):
    reasoning: str = ""
    steps: list[PlanStep] = Field(default_factory=list)


class StepOutcome(BaseModel):
    step: PlanStep
    result: Any = None
    error: Optional[str] = None
    success: bool = True


class RecordCounts(BaseModel):
    """Per-session record counts reported by get_status."""
    memories: int = 0
    tool_executions: int = 0
    events: int = 0

"""
store/base.py — Abstract Store Interface

Every persistence operation the pipeline performs goes through this
interface. All methods may raise StoreError; callers decide whether a
failure is fatal (session lookup) or best-effort (audit, events, memory).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from orion.store.models import (
    GuardrailLogEntry,
    MemoryEntry,
    RecordCounts,
    Session,
    SessionEvent,
    SessionStatus,
    ToolDefinition,
    ToolExecution,
)


class Store(ABC):

    async def init(self) -> None:
        """Open connections / create tables. No-op by default."""

    async def close(self) -> None:
        """Release resources. No-op by default."""

    # ── Memories ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_memory(self, entry: MemoryEntry) -> MemoryEntry:
        """Persist a new entry; raises SessionNotFound if its session is unknown."""

    @abstractmethod
    async def list_recent_memories(self, session_id: str, limit: int) -> list[MemoryEntry]:
        """Newest `limit` entries for the session, returned oldest-first."""

    @abstractmethod
    async def update_memory(
        self,
        memory_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        ...

    @abstractmethod
    async def delete_memory(self, memory_id: str) -> bool:
        ...

    # ── Sessions ──────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        ...

    @abstractmethod
    async def update_session_metadata(self, session_id: str, updates: dict[str, Any]) -> Session:
        """Merge `updates` into the session's metadata."""

    @abstractmethod
    async def update_session_status(self, session_id: str, status: SessionStatus) -> Session:
        ...

    # ── Tools ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_tool(self, name: str) -> Optional[ToolDefinition]:
        ...

    @abstractmethod
    async def list_active_tools(self) -> list[ToolDefinition]:
        ...

    @abstractmethod
    async def upsert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        ...

    @abstractmethod
    async def create_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        ...

    @abstractmethod
    async def update_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        ...

    # ── Audit + events ────────────────────────────────────────────────────────

    @abstractmethod
    async def append_audit_log(self, entry: GuardrailLogEntry) -> GuardrailLogEntry:
        ...

    @abstractmethod
    async def list_audit_logs(
        self, session_id: Optional[str] = None, limit: int = 100
    ) -> list[GuardrailLogEntry]:
        """Most recent audit entries, newest-first."""

    @abstractmethod
    async def add_event(self, event: SessionEvent) -> SessionEvent:
        ...

    @abstractmethod
    async def count_session_records(self, session_id: str) -> RecordCounts:
        ...

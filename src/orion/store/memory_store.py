"""
store/memory_store.py — In-Process Store

Dict-backed Store used in tests and with `store.backend: memory`.
Records are copied on the way in and out so callers never share
mutable state with the store.
"""

from __future__ import annotations

import itertools
from typing import Any, Optional

from orion.exceptions import SessionNotFound, StoreError
from orion.store.base import Store
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


class InMemoryStore(Store):

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._memories: dict[str, MemoryEntry] = {}
        self._tools: dict[str, ToolDefinition] = {}
        self._executions: dict[str, ToolExecution] = {}
        self._audit: list[GuardrailLogEntry] = []
        self._events: list[SessionEvent] = []
        self._seq = itertools.count(1)

    # ── Memories ──────────────────────────────────────────────────────────────

    async def create_memory(self, entry: MemoryEntry) -> MemoryEntry:
        if entry.session_id not in self._sessions:
            raise SessionNotFound(entry.session_id)
        stored = entry.model_copy(deep=True, update={"seq": next(self._seq)})
        self._memories[stored.id] = stored
        return stored.model_copy(deep=True)

    async def list_recent_memories(self, session_id: str, limit: int) -> list[MemoryEntry]:
        if limit <= 0:
            return []
        entries = sorted(
            (m for m in self._memories.values() if m.session_id == session_id),
            key=lambda m: m.seq,
            reverse=True,
        )[:limit]
        return [m.model_copy(deep=True) for m in reversed(entries)]

    async def update_memory(
        self,
        memory_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        entry = self._memories.get(memory_id)
        if entry is None:
            raise StoreError(f"Memory not found: {memory_id}")
        if content is not None:
            entry.content = content
        if metadata is not None:
            entry.metadata = {**entry.metadata, **metadata}
        return entry.model_copy(deep=True)

    async def delete_memory(self, memory_id: str) -> bool:
        return self._memories.pop(memory_id, None) is not None

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def create_session(self, session: Session) -> Session:
        if session.id in self._sessions:
            raise StoreError(f"Session already exists: {session.id}")
        self._sessions[session.id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    async def update_session_metadata(self, session_id: str, updates: dict[str, Any]) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.metadata = {**session.metadata, **updates}
        return session.model_copy(deep=True)

    async def update_session_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.status = status
        return session.model_copy(deep=True)

    # ── Tools ─────────────────────────────────────────────────────────────────

    async def get_tool(self, name: str) -> Optional[ToolDefinition]:
        tool = self._tools.get(name)
        return tool.model_copy(deep=True) if tool else None

    async def list_active_tools(self) -> list[ToolDefinition]:
        return [
            t.model_copy(deep=True)
            for t in sorted(self._tools.values(), key=lambda t: t.name)
            if t.is_active
        ]

    async def upsert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        self._tools[tool.name] = tool.model_copy(deep=True)
        return tool

    async def create_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    async def update_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        if execution.id not in self._executions:
            raise StoreError(f"Tool execution not found: {execution.id}")
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    def executions_for(self, session_id: str) -> list[ToolExecution]:
        """Test/debug helper: execution records for a session in creation order."""
        return [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if e.session_id == session_id
        ]

    # ── Audit + events ────────────────────────────────────────────────────────

    async def append_audit_log(self, entry: GuardrailLogEntry) -> GuardrailLogEntry:
        self._audit.append(entry.model_copy(deep=True))
        return entry

    async def list_audit_logs(
        self, session_id: Optional[str] = None, limit: int = 100
    ) -> list[GuardrailLogEntry]:
        entries = [
            e for e in reversed(self._audit)
            if session_id is None or e.session_id == session_id
        ]
        return [e.model_copy(deep=True) for e in entries[:limit]]

    async def add_event(self, event: SessionEvent) -> SessionEvent:
        self._events.append(event.model_copy(deep=True))
        return event

    def events_for(self, session_id: str) -> list[SessionEvent]:
        return [e.model_copy(deep=True) for e in self._events if e.session_id == session_id]

    async def count_session_records(self, session_id: str) -> RecordCounts:
        return RecordCounts(
            memories=sum(1 for m in self._memories.values() if m.session_id == session_id),
            tool_executions=sum(
                1 for e in self._executions.values() if e.session_id == session_id
            ),
            events=sum(1 for e in self._events if e.session_id == session_id),
        )

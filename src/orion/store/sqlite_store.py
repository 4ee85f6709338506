"""
store/sqlite_store.py — SQLite Store

aiosqlite-backed implementation of the Store interface.

Tables:
  - sessions         : session rows with JSON metadata
  - memories         : append-only turn summaries (seq = insertion order)
  - tools            : tool definitions, schema stored as JSON
  - tool_executions  : one row per invocation, updated at settlement
  - guardrail_logs   : audit trail of guard decisions
  - session_events   : agent_plan / tool_call / status_change records

Usage:
    store = SqliteStore("./data/sqlite/orion.db")
    await store.init()
    session = await store.create_session(Session(user_id="user-1"))
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from orion.exceptions import SessionNotFound, StoreError
from orion.observability.logger import get_logger
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
    ToolSchema,
)

log = get_logger(__name__)

# ── Schema DDL ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    status      TEXT NOT NULL,     -- 'active' | 'paused' | 'ended' | 'error'
    metadata    TEXT DEFAULT '{}',
    created_at  REAL NOT NULL,
    ended_at    REAL
);

CREATE TABLE IF NOT EXISTS memories (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    session_id  TEXT NOT NULL,
    type        TEXT NOT NULL,
    content     TEXT NOT NULL,
    metadata    TEXT DEFAULT '{}',
    created_at  REAL NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE TABLE IF NOT EXISTS tools (
    name         TEXT PRIMARY KEY,
    description  TEXT DEFAULT '',
    schema_json  TEXT NOT NULL,
    is_active    INTEGER DEFAULT 1,
    rate_limit   INTEGER
);

CREATE TABLE IF NOT EXISTS tool_executions (
    id            TEXT PRIMARY KEY,
    session_id    TEXT NOT NULL,
    tool_name     TEXT NOT NULL,
    input_json    TEXT,
    output_json   TEXT,
    error         TEXT,
    status        TEXT NOT NULL,   -- 'pending' | 'running' | 'completed' | 'failed'
    duration_ms   REAL,
    created_at    REAL NOT NULL,
    completed_at  REAL
);

CREATE TABLE IF NOT EXISTS guardrail_logs (
    id          TEXT PRIMARY KEY,
    session_id  TEXT,
    rule        TEXT NOT NULL,
    action      TEXT NOT NULL,
    input       TEXT,
    reason      TEXT,
    metadata    TEXT DEFAULT '{}',
    created_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS session_events (
    id          TEXT PRIMARY KEY,
    session_id  TEXT NOT NULL,
    type        TEXT NOT NULL,
    data        TEXT DEFAULT '{}',
    created_at  REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id, seq);
CREATE INDEX IF NOT EXISTS idx_executions_session ON tool_executions(session_id);
CREATE INDEX IF NOT EXISTS idx_guardrail_logs_session ON guardrail_logs(session_id);
CREATE INDEX IF NOT EXISTS idx_events_session ON session_events(session_id);
"""


class SqliteStore(Store):
    """Async SQLite-backed store. Call `await init()` before use."""

    def __init__(self, db_path: str = "./data/sqlite/orion.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        """Create the database file and tables if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        log.info("sqlite_store.initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError(
                "SqliteStore is not initialised (or has been closed). "
                "Call `await store.init()` before use."
            )
        return self._db

    async def _write(self, sql: str, params: tuple) -> int:
        db = self._require_db()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite write failed: {e}") from e

    async def _fetchall(self, sql: str, params: tuple) -> list[aiosqlite.Row]:
        db = self._require_db()
        try:
            cursor = await db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite read failed: {e}") from e

    async def _fetchone(self, sql: str, params: tuple) -> Optional[aiosqlite.Row]:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # ── Memories ──────────────────────────────────────────────────────────────

    async def create_memory(self, entry: MemoryEntry) -> MemoryEntry:
        if await self._fetchone("SELECT id FROM sessions WHERE id=?", (entry.session_id,)) is None:
            raise SessionNotFound(entry.session_id)
        db = self._require_db()
        try:
            cursor = await db.execute(
                """INSERT INTO memories (id, session_id, type, content, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.session_id,
                    entry.type.value,
                    entry.content,
                    json.dumps(entry.metadata),
                    entry.created_at,
                ),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite write failed: {e}") from e
        return entry.model_copy(update={"seq": cursor.lastrowid})

    async def list_recent_memories(self, session_id: str, limit: int) -> list[MemoryEntry]:
        if limit <= 0:
            return []
        rows = await self._fetchall(
            "SELECT * FROM memories WHERE session_id=? ORDER BY seq DESC LIMIT ?",
            (session_id, limit),
        )
        return [self._row_to_memory(r) for r in reversed(rows)]

    async def update_memory(
        self,
        memory_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        row = await self._fetchone("SELECT * FROM memories WHERE id=?", (memory_id,))
        if row is None:
            raise StoreError(f"Memory not found: {memory_id}")
        entry = self._row_to_memory(row)
        if content is not None:
            entry.content = content
        if metadata is not None:
            entry.metadata = {**entry.metadata, **metadata}
        await self._write(
            "UPDATE memories SET content=?, metadata=? WHERE id=?",
            (entry.content, json.dumps(entry.metadata), memory_id),
        )
        return entry

    async def delete_memory(self, memory_id: str) -> bool:
        return await self._write("DELETE FROM memories WHERE id=?", (memory_id,)) > 0

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def get_session(self, session_id: str) -> Optional[Session]:
        row = await self._fetchone("SELECT * FROM sessions WHERE id=?", (session_id,))
        return self._row_to_session(row) if row else None

    async def create_session(self, session: Session) -> Session:
        await self._write(
            """INSERT INTO sessions (id, user_id, status, metadata, created_at, ended_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                session.id,
                session.user_id,
                session.status.value,
                json.dumps(session.metadata),
                session.created_at,
                session.ended_at,
            ),
        )
        return session

    async def update_session_metadata(self, session_id: str, updates: dict[str, Any]) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.metadata = {**session.metadata, **updates}
        await self._write(
            "UPDATE sessions SET metadata=? WHERE id=?",
            (json.dumps(session.metadata), session_id),
        )
        return session

    async def update_session_status(self, session_id: str, status: SessionStatus) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.status = status
        await self._write("UPDATE sessions SET status=? WHERE id=?", (status.value, session_id))
        return session

    # ── Tools ─────────────────────────────────────────────────────────────────

    async def get_tool(self, name: str) -> Optional[ToolDefinition]:
        row = await self._fetchone("SELECT * FROM tools WHERE name=?", (name,))
        return self._row_to_tool(row) if row else None

    async def list_active_tools(self) -> list[ToolDefinition]:
        rows = await self._fetchall("SELECT * FROM tools WHERE is_active=1 ORDER BY name", ())
        return [self._row_to_tool(r) for r in rows]

    async def upsert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        await self._write(
            """INSERT INTO tools (name, description, schema_json, is_active, rate_limit)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET
                 description=excluded.description,
                 schema_json=excluded.schema_json,
                 is_active=excluded.is_active,
                 rate_limit=excluded.rate_limit""",
            (
                tool.name,
                tool.description,
                tool.tool_schema.model_dump_json(),
                int(tool.is_active),
                tool.rate_limit,
            ),
        )
        return tool

    async def create_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        await self._write(
            """INSERT INTO tool_executions
               (id, session_id, tool_name, input_json, output_json, error,
                status, duration_ms, created_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                execution.id,
                execution.session_id,
                execution.tool_name,
                json.dumps(execution.input, default=str),
                json.dumps(execution.output, default=str),
                execution.error,
                execution.status.value,
                execution.duration_ms,
                execution.created_at,
                execution.completed_at,
            ),
        )
        return execution

    async def update_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        updated = await self._write(
            """UPDATE tool_executions SET
               output_json=?, error=?, status=?, duration_ms=?, completed_at=?
               WHERE id=?""",
            (
                json.dumps(execution.output, default=str),
                execution.error,
                execution.status.value,
                execution.duration_ms,
                execution.completed_at,
                execution.id,
            ),
        )
        if updated == 0:
            raise StoreError(f"Tool execution not found: {execution.id}")
        return execution

    # ── Audit + events ────────────────────────────────────────────────────────

    async def append_audit_log(self, entry: GuardrailLogEntry) -> GuardrailLogEntry:
        await self._write(
            """INSERT INTO guardrail_logs
               (id, session_id, rule, action, input, reason, metadata, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.id,
                entry.session_id,
                entry.rule,
                entry.action.value,
                entry.input,
                entry.reason,
                json.dumps(entry.metadata),
                entry.created_at,
            ),
        )
        return entry

    async def list_audit_logs(
        self, session_id: Optional[str] = None, limit: int = 100
    ) -> list[GuardrailLogEntry]:
        if session_id:
            rows = await self._fetchall(
                "SELECT * FROM guardrail_logs WHERE session_id=? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (session_id, limit),
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM guardrail_logs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            )
        return [
            GuardrailLogEntry(
                id=r["id"],
                session_id=r["session_id"],
                rule=r["rule"],
                action=r["action"],
                input=r["input"] or "",
                reason=r["reason"] or "",
                metadata=json.loads(r["metadata"] or "{}"),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def add_event(self, event: SessionEvent) -> SessionEvent:
        await self._write(
            "INSERT INTO session_events (id, session_id, type, data, created_at) VALUES (?, ?, ?, ?, ?)",
            (
                event.id,
                event.session_id,
                event.type.value,
                json.dumps(event.data, default=str),
                event.created_at,
            ),
        )
        return event

    async def count_session_records(self, session_id: str) -> RecordCounts:
        row = await self._fetchone(
            """SELECT
                 (SELECT COUNT(*) FROM memories WHERE session_id=?)        AS memories,
                 (SELECT COUNT(*) FROM tool_executions WHERE session_id=?) AS tool_executions,
                 (SELECT COUNT(*) FROM session_events WHERE session_id=?)  AS events""",
            (session_id, session_id, session_id),
        )
        return RecordCounts(**dict(row)) if row else RecordCounts()

    # ── Row mappers ───────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            status=row["status"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=row["created_at"],
            ended_at=row["ended_at"],
        )

    @staticmethod
    def _row_to_memory(row: aiosqlite.Row) -> MemoryEntry:
        return MemoryEntry(
            id=row["id"],
            session_id=row["session_id"],
            type=row["type"],
            content=row["content"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=row["created_at"],
            seq=row["seq"],
        )

    @staticmethod
    def _row_to_tool(row: aiosqlite.Row) -> ToolDefinition:
        return ToolDefinition(
            name=row["name"],
            description=row["description"] or "",
            schema=ToolSchema.model_validate_json(row["schema_json"]),
            is_active=bool(row["is_active"]),
            rate_limit=row["rate_limit"],
        )

"""
memory/context.py — Session Context Store

Thin adapter over the Store for conversational context: one memory entry
per settled turn, read back as a bounded chronological window that the
fast path and the planner paste into their prompts.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from orion.observability.logger import get_logger
from orion.store.base import Store
from orion.store.models import MemoryEntry, MemoryType

log = get_logger(__name__)


class ContextStore:

    def __init__(self, store: Store, fetch_limit: int = 50):
        self._store = store
        self._fetch_limit = fetch_limit

    async def append(
        self,
        session_id: str,
        content: str,
        type: MemoryType = MemoryType.CONTEXT,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        entry = MemoryEntry(
            session_id=session_id,
            type=type,
            content=content,
            metadata=metadata if metadata is not None else {"timestamp": time.time()},
        )
        stored = await self._store.create_memory(entry)
        log.debug("context.appended", session_id=session_id, seq=stored.seq)
        return stored

    async def append_turn(self, session_id: str, user_input: str, response: str) -> MemoryEntry:
        return await self.append(session_id, f"User: {user_input}\nAssistant: {response}")

    async def recent(self, session_id: str, limit: Optional[int] = None) -> list[MemoryEntry]:
        """Newest `limit` entries (default fetch_limit), oldest-first."""
        return await self._store.list_recent_memories(
            session_id, self._fetch_limit if limit is None else limit
        )

    async def recent_text(self, session_id: str, limit: int) -> str:
        entries = await self.recent(session_id, limit)
        return "\n".join(e.content for e in entries)

    async def update(
        self,
        memory_id: str,
        content: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        return await self._store.update_memory(memory_id, content=content, metadata=metadata)

    async def delete(self, memory_id: str) -> bool:
        return await self._store.delete_memory(memory_id)

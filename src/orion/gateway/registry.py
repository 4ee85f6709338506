"""
gateway/registry.py — Connection registry + per-session turn gate

ConnectionRegistry maps session id → live connection ids. Every mutation
happens under one asyncio.Lock, so attach/detach can report "first
connection" / "last connection" atomically.

TurnGate guarantees at most one turn in flight per session:
  - reject: a second turn raises SessionBusyError immediately
  - queue:  a second turn waits for the first to settle
Turns on different sessions never wait on each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from orion.exceptions import SessionBusyError
from orion.observability.logger import get_logger

log = get_logger(__name__)


class ConnectionRegistry:

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, set[str]] = {}

    async def attach(self, session_id: str, connection_id: str) -> bool:
        """Register a connection. Returns True if it is the session's first."""
        async with self._lock:
            conns = self._sessions.setdefault(session_id, set())
            first = not conns
            conns.add(connection_id)
        log.debug("registry.attached", session_id=session_id, connection_id=connection_id, first=first)
        return first

    async def detach(self, session_id: str, connection_id: str) -> bool:
        """Unregister a connection. Returns True if it was the session's last."""
        async with self._lock:
            conns = self._sessions.get(session_id)
            if not conns or connection_id not in conns:
                return False
            conns.discard(connection_id)
            last = not conns
            if last:
                del self._sessions[session_id]
        log.debug("registry.detached", session_id=session_id, connection_id=connection_id, last=last)
        return last

    async def connections(self, session_id: str) -> frozenset[str]:
        async with self._lock:
            return frozenset(self._sessions.get(session_id, ()))

    async def count(self, session_id: str) -> int:
        async with self._lock:
            return len(self._sessions.get(session_id, ()))

    async def total(self) -> int:
        async with self._lock:
            return sum(len(c) for c in self._sessions.values())


class TurnGate:

    def __init__(self, policy: str = "reject") -> None:
        if policy not in ("reject", "queue"):
            raise ValueError(f"Unknown busy policy: {policy}")
        self.policy = policy
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[None]:
        """
        Hold the session's turn slot for the duration of the block.

        Raises:
            SessionBusyError: policy is "reject" and a turn is in flight.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if self.policy == "reject" and lock.locked():
            raise SessionBusyError(session_id)

        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_slot(session_id)
            raise
        try:
            yield
        finally:
            lock.release()
            self._release_slot(session_id)

    def _release_slot(self, session_id: str) -> None:
        remaining = self._holders.get(session_id, 1) - 1
        if remaining <= 0:
            self._holders.pop(session_id, None)
            self._locks.pop(session_id, None)
        else:
            self._holders[session_id] = remaining

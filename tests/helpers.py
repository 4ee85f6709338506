"""
Shared test doubles for the unit suite.

  - ScriptedProvider    : completion provider with canned replies / stream deltas
  - GatedProvider       : streams only after an asyncio.Event is set
  - RecordingTransport  : Transport that records every emission in order
  - RecordingStore      : InMemoryStore that logs every tool execution status write
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Optional

from orion.brain.provider import BaseCompletionProvider, ProviderChain
from orion.brain.types import CompletionOptions, Message
from orion.exceptions import ProviderError
from orion.store.memory_store import InMemoryStore
from orion.store.models import ToolDefinition, ToolExecution, ToolSchema


class ScriptedProvider(BaseCompletionProvider):
    """
    complete() pops from `replies` (the last reply repeats); stream() yields
    `deltas`. An Exception instance in either list is raised instead.
    """

    name = "scripted"

    def __init__(
        self,
        replies: Optional[list[Any]] = None,
        deltas: Optional[list[Any]] = None,
    ):
        self.replies = list(replies or ["ok"])
        self.deltas = list(deltas or [])
        self.calls: list[tuple[str, list[Message], CompletionOptions]] = []

    async def complete(self, system_prompt, messages, options) -> str:
        self.calls.append((system_prompt, messages, options))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, system_prompt, messages, options) -> AsyncIterator[str]:
        self.calls.append((system_prompt, messages, options))
        for delta in self.deltas:
            if isinstance(delta, Exception):
                raise delta
            yield delta


class GatedProvider(ScriptedProvider):
    """Yields its first delta, then blocks until `release` is set."""

    name = "gated"

    def __init__(self, deltas: list[str]):
        super().__init__(deltas=deltas)
        self.release = asyncio.Event()

    async def stream(self, system_prompt, messages, options) -> AsyncIterator[str]:
        self.calls.append((system_prompt, messages, options))
        for i, delta in enumerate(self.deltas):
            if i == 1:
                await self.release.wait()
            yield delta


class RecordingTransport:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, Any]] = []

    async def emit_chunk(self, connection_id: str, text: str) -> None:
        self.events.append(("text_chunk", connection_id, text))

    async def emit_complete(self, connection_id: str, full_text: str) -> None:
        self.events.append(("text_complete", connection_id, full_text))

    async def emit_error(self, connection_id: str, message: str) -> None:
        self.events.append(("error", connection_id, message))

    async def emit_status(self, connection_id: str, data: dict) -> None:
        self.events.append(("status", connection_id, data))

    async def broadcast(self, session_id: str, event: str, data: dict) -> None:
        self.events.append((event, session_id, data))

    def of(self, kind: str) -> list[Any]:
        return [payload for k, _, payload in self.events if k == kind]

    def kinds(self) -> list[str]:
        return [k for k, _, _ in self.events]

    def chunks_for(self, connection_id: str) -> list[str]:
        return [p for k, c, p in self.events if k == "text_chunk" and c == connection_id]


class RecordingStore(InMemoryStore):
    """Keeps the status of every create/update of a tool execution, in order."""

    def __init__(self) -> None:
        super().__init__()
        self.status_log: list[tuple[str, str]] = []

    async def create_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        self.status_log.append((execution.id, execution.status.value))
        return await super().create_tool_execution(execution)

    async def update_tool_execution(self, execution: ToolExecution) -> ToolExecution:
        self.status_log.append((execution.id, execution.status.value))
        return await super().update_tool_execution(execution)


def provider_failure(message: str = "boom", status_code: Optional[int] = 400) -> ProviderError:
    return ProviderError(message, provider="scripted", status_code=status_code)


def chain_of(*providers: BaseCompletionProvider) -> ProviderChain:
    return ProviderChain(list(providers), max_attempts=1, base_delay=0.0)


def http_tool(name: str = "send_email_notification", **schema: Any) -> ToolDefinition:
    defaults = {
        "type": "http",
        "method": "POST",
        "url": "https://api.example.test/email/send",
        "body_params": ["to", "subject", "message", "sessionId"],
    }
    defaults.update(schema)
    return ToolDefinition(name=name, description=f"{name} tool", schema=ToolSchema(**defaults))


def function_tool(name: str, expression: str, parameters: Optional[dict] = None) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        schema=ToolSchema(type="function", expression=expression, parameters=parameters or {}),
    )

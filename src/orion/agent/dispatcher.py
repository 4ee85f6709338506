"""
agent/dispatcher.py — Session Pipeline

Runs one user turn end to end and streams the reply back over the
transport.

Turn states:
  received → validating_input → {fast_path | planning → executing}
           → validating_output → streaming → settled
  any failure before delivery → rejected

Fast path:   guard(input) → recent context → provider stream (coalesced
             chunks) → guard(output) → text_complete
Planning:    guard(input) → context + active tools → planner → agent_plan
             event → executor → aggregate → guard(output) → word-group
             chunks → text_complete

After a settled turn the exchange is appended to the session context and
session naming runs in the background. Both are best-effort.

text_complete is emitted exactly once per turn, after every chunk.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from orion.agent.classifier import Classifier, Route
from orion.agent.executor import PlanExecutor, aggregate
from orion.agent.naming import SessionNamer
from orion.agent.planner import Planner
from orion.agent.utils import fire_and_forget, pending_background_tasks
from orion.brain.provider import ProviderChain
from orion.brain.types import CompletionOptions, Message
from orion.config.settings import PipelineConfig
from orion.exceptions import (
    OrionError,
    PlanningError,
    ProviderError,
    ProviderUnavailable,
    SessionBusyError,
    StoreError,
    ValidationRejected,
)
from orion.gateway.registry import ConnectionRegistry, TurnGate
from orion.memory.context import ContextStore
from orion.observability.logger import bind_route, get_logger, turn_context
from orion.safety.guardrails import Guardrails
from orion.store.base import Store
from orion.store.models import EventType, SessionEvent

log = get_logger(__name__)

FAST_SYSTEM = (
    "You are ORION, a helpful and concise AI assistant. Provide brief, natural "
    "responses. Keep answers under 3 sentences unless more detail is "
    "specifically requested."
)

NO_PROVIDER_REPLY = "I'm here to help! How can I assist you?"
PROVIDER_FAILED_REPLY = "I'm here to help! What would you like to know?"
EMPTY_REPLY = "I'm not sure how to respond to that."
OUTPUT_REFUSAL = (
    "I'm sorry, but I cannot provide that response. Please try rephrasing your question."
)
OUTPUT_BLOCKED_REASON = "Response blocked by guardrails"


class Transport(Protocol):
    """Outbound side of a connection. Unknown/closed connection ids are ignored."""

    async def emit_chunk(self, connection_id: str, text: str) -> None: ...

    async def emit_complete(self, connection_id: str, full_text: str) -> None: ...

    async def emit_error(self, connection_id: str, message: str) -> None: ...

    async def emit_status(self, connection_id: str, data: dict[str, Any]) -> None: ...

    async def broadcast(self, session_id: str, event: str, data: dict[str, Any]) -> None: ...


class TurnState(str, Enum):
    RECEIVED = "received"
    VALIDATING_INPUT = "validating_input"
    FAST_PATH = "fast_path"
    PLANNING = "planning"
    EXECUTING = "executing"
    VALIDATING_OUTPUT = "validating_output"
    STREAMING = "streaming"
    SETTLED = "settled"
    REJECTED = "rejected"
    BUSY = "busy"


@dataclass
class TurnResult:
    state: TurnState
    response: str
    route: Optional[Route] = None


class _TurnRejected(Exception):
    """Internal: ends a turn with a user-facing message."""

    def __init__(self, message: str, notify_error: bool = False):
        super().__init__(message)
        self.message = message
        self.notify_error = notify_error


class SessionDispatcher:
    """
    Usage:
        dispatcher = SessionDispatcher(store, transport, chain, guard, planner,
                                       executor, namer, gate=TurnGate("reject"))
        result = await dispatcher.handle_text_input(session_id, user_id, conn_id, text)
    """

    def __init__(
        self,
        store: Store,
        transport: Transport,
        provider: ProviderChain,
        guard: Guardrails,
        planner: Planner,
        executor: PlanExecutor,
        namer: Optional[SessionNamer] = None,
        config: Optional[PipelineConfig] = None,
        gate: Optional[TurnGate] = None,
        registry: Optional[ConnectionRegistry] = None,
        classifier: Optional[Classifier] = None,
        chat_options: Optional[CompletionOptions] = None,
    ):
        self._store = store
        self._transport = transport
        self._provider = provider
        self._guard = guard
        self._planner = planner
        self._executor = executor
        self._namer = namer
        self._config = config or PipelineConfig()
        self._gate = gate or TurnGate(self._config.busy_policy)
        self._registry = registry
        self._classifier = classifier or Classifier()
        self._context = ContextStore(store, fetch_limit=self._config.context_fetch_limit)
        self._chat_options = chat_options or CompletionOptions(max_tokens=300)

    @property
    def context(self) -> ContextStore:
        return self._context

    # ── Turn entry point ──────────────────────────────────────────────────────

    async def handle_text_input(
        self,
        session_id: str,
        user_id: str,
        connection_id: str,
        text: str,
    ) -> TurnResult:
        with turn_context(session_id, user_id, connection_id):
            try:
                async with self._gate.turn(session_id):
                    return await self._run_turn(session_id, user_id, connection_id, text)
            except SessionBusyError:
                log.info("dispatcher.busy")
                await self._transport.emit_status(
                    connection_id,
                    {"state": "busy", "retryable": True, "sessionId": session_id},
                )
                return TurnResult(state=TurnState.BUSY, response="")

    async def _run_turn(
        self,
        session_id: str,
        user_id: str,
        connection_id: str,
        text: str,
    ) -> TurnResult:
        route: Optional[Route] = None
        try:
            self._transition(TurnState.RECEIVED)
            user_input = (text or "").strip()
            await self._authorize(session_id, user_id)

            self._transition(TurnState.VALIDATING_INPUT)
            verdict = await self._guard.evaluate_input(user_input, session_id)
            if not verdict.allowed:
                raise ValidationRejected(verdict.rule or "input", f"Input blocked: {verdict.reason}")

            route = self._classifier.classify(user_input)
            bind_route(route.value)
            if route == Route.FAST:
                self._transition(TurnState.FAST_PATH)
                response = await self._fast_path(session_id, connection_id, user_input)
            else:
                self._transition(TurnState.PLANNING)
                response = await self._planning_path(session_id, connection_id, user_input)

            self._transition(TurnState.SETTLED)
            await self._after_turn(session_id, user_input, response)
            return TurnResult(state=TurnState.SETTLED, response=response, route=route)

        except _TurnRejected as r:
            return await self._reject(connection_id, r.message, r.notify_error, route)
        except ValidationRejected as v:
            log.warning("dispatcher.guard_rejected", rule=v.rule)
            return await self._reject(connection_id, v.reason, False, route)
        except OrionError as e:
            log.error("dispatcher.turn_failed", error=str(e), error_type=type(e).__name__)
            return await self._reject(connection_id, f"⚠️ {e}", True, route)

    # ── Paths ─────────────────────────────────────────────────────────────────

    async def _fast_path(self, session_id: str, connection_id: str, user_input: str) -> str:
        if not self._provider.is_configured:
            await self._transport.emit_complete(connection_id, NO_PROVIDER_REPLY)
            return NO_PROVIDER_REPLY

        recent = await self._recent_context(session_id, self._config.fast_path_context_entries)
        messages: list[Message] = []
        if recent:
            messages.append(Message.system(f"Recent conversation:\n{recent}"))
        messages.append(Message.user(user_input))

        self._transition(TurnState.STREAMING)
        full = ""
        buffer = ""
        try:
            async for delta in self._provider.stream(FAST_SYSTEM, messages, self._chat_options):
                full += delta
                buffer += delta
                if len(buffer) >= self._config.stream_batch_min_chars:
                    await self._transport.emit_chunk(connection_id, buffer)
                    buffer = ""
            if buffer:
                await self._transport.emit_chunk(connection_id, buffer)
        except (ProviderError, ProviderUnavailable) as e:
            log.error("dispatcher.fast_path_failed", error=str(e))
            await self._transport.emit_complete(connection_id, PROVIDER_FAILED_REPLY)
            return PROVIDER_FAILED_REPLY

        self._transition(TurnState.VALIDATING_OUTPUT)
        if not await self._guard.evaluate_output(full, session_id):
            log.warning("dispatcher.output_blocked", path=Route.FAST.value)
            await self._transport.emit_complete(connection_id, OUTPUT_REFUSAL)
            return OUTPUT_REFUSAL

        await self._transport.emit_complete(connection_id, full)
        return full or EMPTY_REPLY

    async def _planning_path(self, session_id: str, connection_id: str, user_input: str) -> str:
        memories = await self._context.recent(session_id)
        tools = await self._store.list_active_tools()

        try:
            plan = await self._planner.plan(
                session_id,
                user_input,
                context_text="\n".join(m.content for m in memories) or None,
                tools=tools,
                memories=memories,
            )
        except PlanningError as e:
            raise _TurnRejected(f"⚠️ {e}", notify_error=True) from e

        await self._record_event(
            session_id,
            EventType.AGENT_PLAN,
            {"input": user_input, "plan": plan.model_dump()},
        )

        self._transition(TurnState.EXECUTING)
        outcomes = await self._executor.execute(session_id, plan)
        response = aggregate(outcomes)

        self._transition(TurnState.VALIDATING_OUTPUT)
        if not await self._guard.evaluate_output(response, session_id):
            log.warning("dispatcher.output_blocked", path=Route.PLANNING.value)
            raise ValidationRejected("output", f"⚠️ {OUTPUT_BLOCKED_REASON}")

        self._transition(TurnState.STREAMING)
        await self._stream_words(connection_id, response)
        return response

    async def _stream_words(self, connection_id: str, text: str) -> None:
        """Re-chunk into groups of words; concatenated chunks equal text."""
        words = text.split(" ")
        group = self._config.stream_word_group
        pause = self._config.stream_pacing_ms / 1000
        for start in range(0, len(words), group):
            chunk = " ".join(words[start:start + group])
            if start > 0:
                chunk = " " + chunk
            await self._transport.emit_chunk(connection_id, chunk)
            if pause:
                await asyncio.sleep(pause)
        await self._transport.emit_complete(connection_id, text)

    # ── Status ────────────────────────────────────────────────────────────────

    async def status(self, session_id: str) -> dict[str, Any]:
        session = await self._store.get_session(session_id)
        if session is None:
            return {}
        counts = await self._store.count_session_records(session_id)
        active = await self._registry.count(session_id) if self._registry else 0
        return {
            "sessionId": session.id,
            "status": session.status.value,
            "name": session.name,
            "activeConnections": active,
            "busy": self._gate.is_busy(session_id),
            "backgroundTasks": pending_background_tasks(session_id),
            "stats": {
                "memories": counts.memories,
                "toolExecutions": counts.tool_executions,
                "events": counts.events,
            },
        }

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _authorize(self, session_id: str, user_id: str) -> None:
        try:
            session = await self._store.get_session(session_id)
        except StoreError as e:
            raise _TurnRejected("⚠️ Session not found", notify_error=True) from e
        if session is None or session.user_id != user_id:
            raise _TurnRejected("⚠️ Session not found", notify_error=True)

    async def _recent_context(self, session_id: str, limit: int) -> str:
        try:
            return await self._context.recent_text(session_id, limit)
        except StoreError as e:
            log.warning("dispatcher.context_failed", error=str(e))
            return ""

    async def _after_turn(self, session_id: str, user_input: str, response: str) -> None:
        try:
            await self._context.append_turn(session_id, user_input, response)
        except StoreError as e:
            log.error("dispatcher.memory_failed", error=str(e))

        if self._namer is not None:
            fire_and_forget(
                self._namer.maybe_name(session_id, user_input),
                label="session_naming",
                session_id=session_id,
            )

    async def _record_event(self, session_id: str, type: EventType, data: dict[str, Any]) -> None:
        try:
            await self._store.add_event(SessionEvent(session_id=session_id, type=type, data=data))
        except StoreError as e:
            log.warning("dispatcher.event_failed", type=type.value, error=str(e))

    async def _reject(
        self,
        connection_id: str,
        message: str,
        notify_error: bool,
        route: Optional[Route],
    ) -> TurnResult:
        self._transition(TurnState.REJECTED, reason=message)
        await self._transport.emit_complete(connection_id, message)
        if notify_error:
            await self._transport.emit_error(connection_id, message.removeprefix("⚠️ "))
        return TurnResult(state=TurnState.REJECTED, response=message, route=route)

    @staticmethod
    def _transition(state: TurnState, **extra: Any) -> None:
        log.debug("dispatcher.turn_state", state=state.value, **extra)

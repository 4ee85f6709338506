"""
tests/integration/test_pipeline_integration.py — Pipeline Integration Tests

Real component wiring with only the completion provider scripted:
  - settings loaded from the shipped config/config.yaml
  - tools seeded into a file-backed SqliteStore
  - a planning turn running a function tool in the real sandbox
  - context persisted across turns and visible to the next turn
  - guardrail decisions and status counts read back from SQLite

Run:
    pytest tests/integration/test_pipeline_integration.py -v
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import pytest_asyncio

from orion.agent.classifier import Route
from orion.agent.dispatcher import SessionDispatcher, TurnState
from orion.agent.executor import PlanExecutor
from orion.agent.planner import Planner
from orion.agent.utils import drain_background_tasks
from orion.config.settings import load_settings
from orion.gateway.registry import ConnectionRegistry, TurnGate
from orion.main import seed_tools
from orion.observability.logger import get_logger
from orion.safety.guardrails import Guardrails
from orion.store.models import GuardAction, Session
from orion.store.sqlite_store import SqliteStore
from orion.tools.invoker import ToolInvoker
from tests.helpers import RecordingTransport, ScriptedProvider, chain_of

_CONFIG = Path(__file__).parent.parent.parent / "config" / "config.yaml"

TIP_PLAN = json.dumps({
    "reasoning": "Use the tip calculator",
    "steps": [{
        "action": "Calculate a 20% tip on 80",
        "tool": "calculate_tip",
        "parameters": {"amount": 80, "percent": 20},
        "reasoning": "Function tool",
    }],
})


@pytest.fixture
def settings():
    return load_settings(_CONFIG)


@pytest_asyncio.fixture
async def sqlite_store(tmp_path, settings):
    store = SqliteStore(str(tmp_path / "orion.db"))
    await store.init()
    await seed_tools(store, settings.tools.definitions, get_logger("tests"))
    yield store
    await store.close()


def _dispatcher(store, transport, chain, settings) -> SessionDispatcher:
    invoker = ToolInvoker(store, sandbox_timeout_seconds=settings.tools.sandbox_timeout_seconds)
    config = settings.pipeline.model_copy(update={"stream_pacing_ms": 0})
    return SessionDispatcher(
        store,
        transport,
        chain,
        Guardrails(store, settings.guardrails),
        Planner(chain),
        PlanExecutor(invoker, chain),
        namer=None,
        config=config,
        gate=TurnGate(config.busy_policy),
        registry=ConnectionRegistry(),
    )


class TestShippedConfig:
    def test_config_file_validates(self, settings):
        assert settings.pipeline.busy_policy == "reject"
        names = [d["name"] for d in settings.tools.definitions]
        assert names == ["send_email_notification", "list_calendar_events", "calculate_tip"]

    @pytest.mark.asyncio
    async def test_tools_seeded(self, sqlite_store):
        tools = await sqlite_store.list_active_tools()
        assert [t.name for t in tools] == [
            "calculate_tip", "list_calendar_events", "send_email_notification",
        ]
        calendar = await sqlite_store.get_tool("list_calendar_events")
        assert calendar.declares_session_id()
        assert calendar.required_parameters() == ["date"]


class TestPlanningTurn:
    @pytest.mark.asyncio
    async def test_function_tool_turn_persists(self, sqlite_store, settings):
        transport = RecordingTransport()
        session = await sqlite_store.create_session(Session(user_id="user-1"))
        provider = ScriptedProvider([TIP_PLAN])
        dispatcher = _dispatcher(sqlite_store, transport, chain_of(provider), settings)

        result = await dispatcher.handle_text_input(
            session.id, "user-1", "c1", "Please calculate a 20% tip on my 80 dollar bill",
        )
        await drain_background_tasks()

        assert result.state == TurnState.SETTLED
        assert result.route == Route.PLANNING
        assert result.response == "Tip: 16.0"
        assert transport.of("text_complete") == ["Tip: 16.0"]

        counts = await sqlite_store.count_session_records(session.id)
        assert counts.memories == 1
        assert counts.tool_executions == 1
        assert counts.events >= 1

        [memory] = await sqlite_store.list_recent_memories(session.id, 5)
        assert memory.content.endswith("Assistant: Tip: 16.0")

    @pytest.mark.asyncio
    async def test_context_carried_into_next_turn(self, sqlite_store, settings):
        transport = RecordingTransport()
        session = await sqlite_store.create_session(Session(user_id="user-1"))
        provider = ScriptedProvider(deltas=["Sure thing."])
        dispatcher = _dispatcher(sqlite_store, transport, chain_of(provider), settings)

        await dispatcher.handle_text_input(session.id, "user-1", "c1", "hello")
        await drain_background_tasks()
        await dispatcher.handle_text_input(session.id, "user-1", "c1", "thanks")
        await drain_background_tasks()

        _, messages, _ = provider.calls[1]
        assert "User: hello" in messages[0].content
        assert messages[-1].content == "thanks"

    @pytest.mark.asyncio
    async def test_blocked_input_audited(self, sqlite_store, settings):
        transport = RecordingTransport()
        session = await sqlite_store.create_session(Session(user_id="user-1"))
        provider = ScriptedProvider([TIP_PLAN])
        dispatcher = _dispatcher(sqlite_store, transport, chain_of(provider), settings)

        huge = "x" * (settings.guardrails.max_input_chars + 1)
        result = await dispatcher.handle_text_input(session.id, "user-1", "c1", huge)

        assert result.state == TurnState.REJECTED
        assert provider.calls == []
        [entry] = await sqlite_store.list_audit_logs(session.id)
        assert entry.action == GuardAction.BLOCK
        assert len(entry.input) == settings.guardrails.sample_chars

"""
tests/unit/test_invoker.py — Tool Invoker + Sandbox Tests

HTTP tools run against httpx.MockTransport; function tools run in the real
isolated subprocess. Every invocation must leave exactly one execution
record that went pending → running → completed|failed.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from orion.exceptions import StoreError, ToolExecutionError, ToolNotFound, UnsupportedToolType
from orion.store.models import EventType, ExecutionStatus, ToolDefinition, ToolSchema
from orion.tools.invoker import ToolInvoker
from orion.tools.sandbox import run_expression
from tests.helpers import RecordingStore, function_tool, http_tool


@pytest.fixture
def rstore():
    return RecordingStore()


class _Recorder:
    """httpx handler that records requests and replies with a fixed response."""

    def __init__(self, status: int = 200, payload=None, text: str = None):
        self.requests: list[httpx.Request] = []
        self.status = status
        self.payload = payload if payload is not None else {"message": "Email sent"}
        self.text = text

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.payload)


def _invoker(store, handler) -> ToolInvoker:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ToolInvoker(store, client=client, sandbox_timeout_seconds=10.0)


def _statuses(store: RecordingStore) -> list[str]:
    return [status for _, status in store.status_log]


# ─────────────────────────────────────────────────────────────────────────────
# Lookup
# ─────────────────────────────────────────────────────────────────────────────

class TestLookup:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, rstore):
        invoker = _invoker(rstore, _Recorder())
        with pytest.raises(ToolNotFound):
            await invoker.invoke("s", "missing", {})
        assert rstore.status_log == []

    @pytest.mark.asyncio
    async def test_inactive_tool(self, rstore):
        tool = http_tool()
        tool.is_active = False
        await rstore.upsert_tool(tool)
        invoker = _invoker(rstore, _Recorder())
        with pytest.raises(ToolNotFound):
            await invoker.invoke("s", tool.name, {})
        assert rstore.status_log == []


# ─────────────────────────────────────────────────────────────────────────────
# HTTP kind
# ─────────────────────────────────────────────────────────────────────────────

class TestHttpTool:
    @pytest.mark.asyncio
    async def test_post_success_records_lifecycle(self, rstore):
        await rstore.upsert_tool(http_tool())
        handler = _Recorder(payload={"message": "Email sent"})
        invoker = _invoker(rstore, handler)

        result = await invoker.invoke("sess-1", "send_email_notification", {
            "to": "john@example.com", "subject": "Meeting", "message": "Hi", "extra": "dropped",
        })

        assert result == {"message": "Email sent"}
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {
            "to": "john@example.com", "subject": "Meeting", "message": "Hi", "sessionId": "sess-1",
        }

        assert _statuses(rstore) == ["pending", "running", "completed"]
        [record] = rstore.executions_for("sess-1")
        assert record.status == ExecutionStatus.COMPLETED
        assert record.duration_ms >= 0
        assert record.output == {"message": "Email sent"}
        assert record.input["sessionId"] == "sess-1"

    @pytest.mark.asyncio
    async def test_records_tool_call_event(self, rstore):
        await rstore.upsert_tool(http_tool())
        invoker = _invoker(rstore, _Recorder())
        await invoker.invoke("sess-1", "send_email_notification", {"to": "x"})
        [event] = rstore.events_for("sess-1")
        assert event.type == EventType.TOOL_CALL
        assert event.data["tool"] == "send_email_notification"

    @pytest.mark.asyncio
    async def test_caller_session_id_wins(self, rstore):
        await rstore.upsert_tool(http_tool())
        handler = _Recorder()
        await _invoker(rstore, handler).invoke("sess-1", "send_email_notification", {
            "to": "x", "sessionId": "other",
        })
        assert json.loads(handler.requests[0].content)["sessionId"] == "other"

    @pytest.mark.asyncio
    async def test_session_id_not_injected_when_undeclared(self, rstore):
        await rstore.upsert_tool(http_tool("notify", body_params=["to"]))
        handler = _Recorder()
        await _invoker(rstore, handler).invoke("sess-1", "notify", {"to": "x"})
        assert json.loads(handler.requests[0].content) == {"to": "x"}

    @pytest.mark.asyncio
    async def test_get_with_path_and_query_params(self, rstore):
        await rstore.upsert_tool(http_tool(
            "list_calendar_events",
            method="GET",
            url="https://api.example.test/calendar/{sessionId}/events",
            body_params=[],
            query_params=["date", "sessionId"],
        ))
        handler = _Recorder(payload={"events": []})
        await _invoker(rstore, handler).invoke("sess 1", "list_calendar_events", {"date": "2026-10-18"})

        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.raw_path.startswith(b"/calendar/sess%201/events")
        assert dict(request.url.params) == {"date": "2026-10-18"}
        assert request.content == b""

    @pytest.mark.asyncio
    async def test_text_response_returned_as_text(self, rstore):
        await rstore.upsert_tool(http_tool())
        handler = _Recorder(text="plain ok")
        assert await _invoker(rstore, handler).invoke("s", "send_email_notification", {}) == "plain ok"

    @pytest.mark.asyncio
    async def test_non_2xx_fails_with_message(self, rstore):
        await rstore.upsert_tool(http_tool())
        handler = _Recorder(status=502, payload={"error": "smtp down"})
        with pytest.raises(ToolExecutionError, match=r"\(502\): smtp down"):
            await _invoker(rstore, handler).invoke("s", "send_email_notification", {})

        assert _statuses(rstore) == ["pending", "running", "failed"]
        [record] = rstore.executions_for("s")
        assert "smtp down" in record.error
        assert record.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_transport_error_fails(self, rstore):
        await rstore.upsert_tool(http_tool())

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ToolExecutionError, match="N/A"):
            await _invoker(rstore, refuse).invoke("s", "send_email_notification", {})
        assert _statuses(rstore) == ["pending", "running", "failed"]

    @pytest.mark.asyncio
    async def test_each_invoke_creates_one_record(self, rstore):
        await rstore.upsert_tool(http_tool())
        invoker = _invoker(rstore, _Recorder())
        for _ in range(3):
            await invoker.invoke("s", "send_email_notification", {})
        assert len(rstore.executions_for("s")) == 3


class TestUnsupportedKind:
    @pytest.mark.asyncio
    async def test_unknown_schema_type(self, rstore):
        await rstore.upsert_tool(ToolDefinition(name="grpc_tool", schema=ToolSchema(type="grpc")))
        with pytest.raises(UnsupportedToolType):
            await _invoker(rstore, _Recorder()).invoke("s", "grpc_tool", {})
        assert _statuses(rstore) == ["pending", "running", "failed"]


class TestRecordWrites:
    @pytest.mark.asyncio
    async def test_running_update_failure_settles_record(self):
        class FlakyStore(RecordingStore):
            def __init__(self):
                super().__init__()
                self.fail_next_update = True

            async def update_tool_execution(self, execution):
                if self.fail_next_update:
                    self.fail_next_update = False
                    raise StoreError("disk full")
                return await super().update_tool_execution(execution)

        store = FlakyStore()
        await store.upsert_tool(http_tool())
        handler = _Recorder()

        with pytest.raises(ToolExecutionError, match="disk full"):
            await _invoker(store, handler).invoke("s", "send_email_notification", {})

        assert handler.requests == []
        [record] = store.executions_for("s")
        assert record.status == ExecutionStatus.FAILED
        assert "disk full" in record.error
        assert _statuses(store) == ["pending", "failed"]


# ─────────────────────────────────────────────────────────────────────────────
# Function kind (sandbox)
# ─────────────────────────────────────────────────────────────────────────────

class TestFunctionTool:
    @pytest.mark.asyncio
    async def test_expression_evaluated_against_params(self, rstore):
        await rstore.upsert_tool(function_tool(
            "calculate_tip",
            "{'text': 'Tip: ' + str(round(float(params['amount']) * 0.15, 2))}",
            {"amount": "Bill total"},
        ))
        result = await _invoker(rstore, _Recorder()).invoke("s", "calculate_tip", {"amount": "20"})
        assert result == {"text": "Tip: 3.0"}
        assert _statuses(rstore) == ["pending", "running", "completed"]

    @pytest.mark.asyncio
    async def test_session_id_injected_when_declared(self, rstore):
        await rstore.upsert_tool(function_tool(
            "whoami", "params['sessionId']", {"sessionId": "injected"},
        ))
        assert await _invoker(rstore, _Recorder()).invoke("sess-7", "whoami", {}) == "sess-7"

    @pytest.mark.asyncio
    async def test_expression_error_fails_record(self, rstore):
        await rstore.upsert_tool(function_tool("div", "1 / 0"))
        with pytest.raises(ToolExecutionError, match="ZeroDivisionError"):
            await _invoker(rstore, _Recorder()).invoke("s", "div", {})
        assert _statuses(rstore) == ["pending", "running", "failed"]


class TestSandbox:
    @pytest.mark.asyncio
    async def test_pure_builtins_available(self):
        assert await run_expression("sum(params['xs'])", {"xs": [1, 2, 3]}) == 6

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expression", [
        "().__class__.__bases__",
        "__import__('os').getcwd()",
        "open('/etc/passwd').read()",
    ])
    async def test_escape_attempts_rejected(self, expression):
        with pytest.raises(ToolExecutionError):
            await run_expression(expression, {})

    @pytest.mark.asyncio
    async def test_statements_rejected(self):
        with pytest.raises(ToolExecutionError, match="SyntaxError"):
            await run_expression("x = 1", {})

    @pytest.mark.asyncio
    async def test_empty_expression(self):
        with pytest.raises(ToolExecutionError, match="empty expression"):
            await run_expression("   ", {})

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(ToolExecutionError, match="timed out"):
            await run_expression("sum(range(10 ** 12))", {}, timeout_seconds=0.5)

    @pytest.mark.asyncio
    async def test_cancelled_call_kills_child(self, monkeypatch):
        spawned = []
        spawn = asyncio.create_subprocess_exec

        async def recording_spawn(*args, **kwargs):
            proc = await spawn(*args, **kwargs)
            spawned.append(proc)
            return proc

        monkeypatch.setattr("orion.tools.sandbox.asyncio.create_subprocess_exec", recording_spawn)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                run_expression("sum(range(10 ** 12))", {}, timeout_seconds=30), timeout=1.0
            )

        [proc] = spawned
        assert proc.returncode is not None

    @pytest.mark.asyncio
    async def test_no_state_between_calls(self):
        first = await run_expression("len(params)", {"a": 1, "b": 2})
        second = await run_expression("len(params)", {})
        assert (first, second) == (2, 0)

    @pytest.mark.asyncio
    async def test_non_json_result_fails(self):
        with pytest.raises(ToolExecutionError):
            await run_expression("set([1])", {})

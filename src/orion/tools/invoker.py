"""
tools/invoker.py — Tool Invoker

Executes one named tool on behalf of a session.

Flow:
  invoke(session_id, tool_name, params)
    → Store lookup (missing / inactive → ToolNotFound, no record)
    → ToolExecution record: pending → running
    → sessionId injection (only when the tool declares it)
    → HTTP kind (httpx) or function kind (isolated sandbox)
    → record finalized: completed | failed, duration_ms
    → tool_call session event (best-effort)

The invoker never retries; retry policy belongs to the executor.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from orion.exceptions import (
    StoreError,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
    UnsupportedToolType,
)
from orion.observability.logger import get_logger
from orion.store.base import Store
from orion.store.models import (
    EventType,
    ExecutionStatus,
    SessionEvent,
    ToolDefinition,
    ToolExecution,
    ToolKind,
    ToolSchema,
)
from orion.tools.sandbox import run_expression

log = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_SANDBOX_TIMEOUT_SECONDS = 5.0


class ToolInvoker:
    """
    Usage:
        invoker = ToolInvoker(store)
        result = await invoker.invoke(session_id, "send_email_notification", {"to": "..."})
    """

    def __init__(
        self,
        store: Store,
        http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        sandbox_timeout_seconds: float = DEFAULT_SANDBOX_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._store = store
        self._http_timeout = http_timeout_seconds
        self._sandbox_timeout = sandbox_timeout_seconds
        self._client = client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def invoke(self, session_id: str, tool_name: str, params: dict[str, Any]) -> Any:
        tool = await self._store.get_tool(tool_name)
        if tool is None or not tool.is_active:
            raise ToolNotFound(tool_name)

        call_params = dict(params or {})
        if tool.declares_session_id() and call_params.get("sessionId") is None:
            call_params["sessionId"] = session_id

        execution = ToolExecution(session_id=session_id, tool_name=tool_name, input=call_params)
        await self._store.create_tool_execution(execution)

        start = time.monotonic()
        log.info("tool_invoker.start", tool=tool_name, kind=tool.tool_schema.type)

        # Once the record exists, every failure below settles it as failed.
        try:
            execution.transition(ExecutionStatus.RUNNING)
            await self._store.update_tool_execution(execution)
            result = await self._execute(tool, call_params)
        except ToolError as e:
            await self._finalize(execution, start, error=str(e))
            log.error("tool_invoker.failed", tool=tool_name, error=str(e))
            raise
        except asyncio.CancelledError:
            await asyncio.shield(self._finalize(execution, start, error="Tool execution cancelled"))
            raise
        except Exception as e:
            await self._finalize(execution, start, error=str(e))
            log.error("tool_invoker.failed", tool=tool_name, error=str(e), error_type=type(e).__name__)
            raise ToolExecutionError(f"Tool execution failed: {e}") from e

        await self._finalize(execution, start, output=result)
        log.info("tool_invoker.completed", tool=tool_name, duration_ms=execution.duration_ms)

        try:
            await self._store.add_event(SessionEvent(
                session_id=session_id,
                type=EventType.TOOL_CALL,
                data={
                    "tool": tool_name,
                    "input": call_params,
                    "output": result,
                    "duration": execution.duration_ms,
                },
            ))
        except StoreError as e:
            log.warning("tool_invoker.event_failed", tool=tool_name, error=str(e))

        return result

    # ── Execution kinds ───────────────────────────────────────────────────────

    async def _execute(self, tool: ToolDefinition, params: dict[str, Any]) -> Any:
        schema = tool.tool_schema
        if schema.type == ToolKind.HTTP.value:
            return await self._execute_http(schema, params)
        if schema.type == ToolKind.FUNCTION.value:
            return await run_expression(schema.expression, params, self._sandbox_timeout)
        raise UnsupportedToolType(schema.type)

    async def _execute_http(self, schema: ToolSchema, params: dict[str, Any]) -> Any:
        method = (schema.method or "GET").upper()
        path_params = set(_PLACEHOLDER.findall(schema.url))

        def _substitute(match: re.Match) -> str:
            value = params.get(match.group(1))
            return match.group(0) if value is None else quote(str(value), safe="")

        url = _PLACEHOLDER.sub(_substitute, schema.url)

        query = {
            p: str(params[p])
            for p in schema.query_params
            if p not in path_params and params.get(p) is not None
        }
        if query:
            url += ("&" if "?" in url else "?") + urlencode(query)

        body: Optional[dict[str, Any]] = None
        if method != "GET" and schema.body_params:
            body = {p: params[p] for p in schema.body_params if p in params}

        headers = {**schema.headers, "Content-Type": "application/json"}
        log.debug("tool_invoker.http", method=method, url=url, has_body=body is not None)

        try:
            response = await self._http().request(
                method, url, headers=headers, json=body, timeout=self._http_timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ToolExecutionError(
                f"HTTP tool execution failed ({status}): {_error_message(e.response)}"
            ) from e
        except httpx.HTTPError as e:
            raise ToolExecutionError(
                f"HTTP tool execution failed (N/A): {str(e) or type(e).__name__}"
            ) from e

        try:
            return response.json()
        except ValueError:
            return response.text

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _finalize(
        self,
        execution: ToolExecution,
        start: float,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        execution.duration_ms = max(0.0, (time.monotonic() - start) * 1000)
        if error is None:
            execution.output = output
            execution.transition(ExecutionStatus.COMPLETED)
        else:
            execution.error = error
            execution.transition(ExecutionStatus.FAILED)
        try:
            await self._store.update_tool_execution(execution)
        except StoreError as e:
            log.error("tool_invoker.record_failed", execution_id=execution.id, error=str(e))


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or response.reason_phrase)
    return response.reason_phrase

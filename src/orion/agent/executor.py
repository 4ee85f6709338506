"""
agent/executor.py — Plan Executor

Runs a plan's steps strictly in order and returns one StepOutcome per step.
A failing step never aborts the plan: its error is recorded and the next
step runs.

Step kinds:
  - tool step     → ToolInvoker.invoke(), with optional retries on
                    ToolExecutionError (each attempt has its own record)
  - toolless step → short completion seeded with the step's action and
                    reasoning ("I understand you want me to ..." when no
                    provider is configured)

Every step is bounded by step_timeout_seconds.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from orion.brain.provider import ProviderChain
from orion.brain.types import CompletionOptions, Message
from orion.exceptions import ToolExecutionError
from orion.observability.logger import get_logger
from orion.store.models import Plan, PlanStep, StepOutcome
from orion.tools.invoker import ToolInvoker

log = get_logger(__name__)

# Tool names a planner may emit to mean "no tool".
_NO_TOOL_MARKERS = {"", "none", "null", "undefined"}

_RESPONSE_SYSTEM = "You are a helpful voice assistant. Provide clear, concise responses."


def resolve_tool_name(step: PlanStep) -> Optional[str]:
    if step.tool is None:
        return None
    name = step.tool.strip()
    if name.lower() in _NO_TOOL_MARKERS:
        return None
    return name


class PlanExecutor:
    """
    Stateless between calls; safe to share across concurrent turns.

    Usage:
        executor = PlanExecutor(invoker, chain)
        outcomes = await executor.execute(session_id, plan)
    """

    def __init__(
        self,
        invoker: ToolInvoker,
        provider: ProviderChain,
        step_timeout_seconds: float = 45.0,
        tool_retries: int = 0,
        response_options: Optional[CompletionOptions] = None,
    ):
        self._invoker = invoker
        self._provider = provider
        self._step_timeout = step_timeout_seconds
        self._tool_retries = tool_retries
        self._response_options = response_options or CompletionOptions(max_tokens=500)

    async def execute(self, session_id: str, plan: Plan) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []

        for index, step in enumerate(plan.steps):
            try:
                result = await asyncio.wait_for(
                    self._run_step(session_id, step),
                    timeout=self._step_timeout,
                )
                outcomes.append(StepOutcome(step=step, result=result, success=True))
            except asyncio.TimeoutError:
                message = f"Step timed out after {self._step_timeout}s"
                log.error("executor.step_timeout", step=index, action=step.action)
                outcomes.append(_failed(step, message))
            except Exception as e:
                log.error(
                    "executor.step_failed",
                    step=index,
                    action=step.action,
                    tool=step.tool,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcomes.append(_failed(step, str(e)))

        log.info(
            "executor.plan_done",
            steps=len(outcomes),
            failed=sum(1 for o in outcomes if not o.success),
        )
        return outcomes

    async def _run_step(self, session_id: str, step: PlanStep) -> Any:
        tool_name = resolve_tool_name(step)
        if tool_name is None:
            if step.tool is not None:
                log.warning("executor.skipping_invalid_tool", tool=step.tool)
            return await self.generate_response(step)

        attempt = 0
        while True:
            try:
                return await self._invoker.invoke(session_id, tool_name, step.parameters)
            except ToolExecutionError as e:
                if attempt >= self._tool_retries:
                    raise
                attempt += 1
                log.warning("executor.retrying_tool", tool=tool_name, attempt=attempt, error=str(e))

    async def generate_response(self, step: PlanStep) -> str:
        if not self._provider.is_configured:
            return f"I understand you want me to {step.action}"
        prompt = (
            f"Action: {step.action}\nReasoning: {step.reasoning}\n\n"
            "Generate an appropriate response."
        )
        return await self._provider.complete(
            _RESPONSE_SYSTEM, [Message.user(prompt)], self._response_options
        )


def _failed(step: PlanStep, message: str) -> StepOutcome:
    return StepOutcome(step=step, result={"error": message}, error=message, success=False)


# ─────────────────────────────────────────────────────────────────────────────
# Aggregation
# ─────────────────────────────────────────────────────────────────────────────

def outcome_text(outcome: StepOutcome) -> str:
    result = outcome.result
    if isinstance(result, dict):
        for key in ("text", "message"):
            value = result.get(key)
            if value:
                return str(value)
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    return json.dumps(result, separators=(",", ":"), default=str)


def aggregate(outcomes: list[StepOutcome]) -> str:
    """Join each outcome's text in step order, dropping empties."""
    return "\n".join(t for t in (outcome_text(o) for o in outcomes) if t)

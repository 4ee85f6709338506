"""
agent/planner.py — Task Planner

Turns a user request into an ordered list of steps using the completion
provider. Each step names the tool it needs (or none) and its parameters.

Parsing is forgiving: the first balanced JSON object in the reply is used,
markdown fences and surrounding prose are tolerated. Anything that still
cannot be read as a plan becomes a single respond_to_user step, so the
turn always has something to execute.
"""

from __future__ import annotations

import json
from typing import Optional

from pydantic import ValidationError

from orion.brain.provider import ProviderChain
from orion.brain.types import CompletionOptions, Message
from orion.exceptions import PlanningError, PlanningMalformed, ProviderError, ProviderUnavailable
from orion.observability.logger import get_logger
from orion.store.models import MemoryEntry, Plan, PlanStep, ToolDefinition

log = get_logger(__name__)

_PLAN_SYSTEM = """\
You are an AI agent that plans multi-step tasks for a voice AI system.

Available tools:
{tool_list}

Recent context:
{recent_context}

Your job is to:
1. Understand the user's request
2. Break it down into executable steps
3. Identify which tools (if any) are needed for each step
4. Provide clear reasoning for each step

IMPORTANT RULES:
- Use the EXACT tool name from the "Available tools" list above (case-sensitive)
- If no tool is needed, set "tool" to null (not "None", not empty string)
- In "parameters", ONLY include the required parameter values as key-value pairs
- Do NOT include schema metadata (url, type, method, headers, bodyParams, queryParams) in parameters

Example:
{{
  "reasoning": "The user wants a notification sent",
  "steps": [{{
    "action": "Send email to user",
    "tool": "send_email_notification",
    "parameters": {{
      "to": "user@example.com",
      "subject": "Hello",
      "message": "This is a test"
    }},
    "reasoning": "An email tool is available for this"
  }}]
}}

Be concise and actionable."""

_PLAN_USER = """\
User input: {user_input}
{context_line}
Please create a step-by-step plan to accomplish this task. For each step, specify:
1. The action to take
2. If a tool is needed, which tool and its parameters
3. The reasoning for this step

Format your response as JSON with this structure:
{{
  "reasoning": "overall reasoning",
  "steps": [
    {{
      "action": "description of action",
      "tool": "tool name if needed",
      "parameters": {{}},
      "reasoning": "why this step"
    }}
  ]
}}"""

RESPOND_TO_USER = "respond_to_user"


def degraded_plan(reasoning: str) -> Plan:
    return Plan(
        reasoning=reasoning,
        steps=[PlanStep(action=RESPOND_TO_USER, tool=None, reasoning="Error parsing agent plan")],
    )


def describe_tools(tools: list[ToolDefinition]) -> str:
    lines = []
    for tool in tools:
        if not tool.is_active:
            continue
        line = f"- {tool.name}: {tool.description}"
        params = tool.required_parameters()
        if params:
            line += f"\n  Required parameters: {', '.join(params)}"
        lines.append(line)
    return "\n".join(lines)


class Planner:
    """
    Uses the completion provider to decompose a request into steps.

    Usage:
        planner = Planner(chain, settings.llm)
        plan = await planner.plan(session_id, "schedule a meeting", tools=tools)
    """

    def __init__(
        self,
        provider: ProviderChain,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        timeout_seconds: float = 30.0,
        context_entries: int = 10,
    ):
        self._provider = provider
        self._options = CompletionOptions(
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )
        self._context_entries = context_entries

    def build_system_prompt(
        self,
        tools: list[ToolDefinition],
        memories: list[MemoryEntry],
    ) -> str:
        recent = memories[-self._context_entries:] if self._context_entries > 0 else []
        return _PLAN_SYSTEM.format(
            tool_list=describe_tools(tools) or "No tools available",
            recent_context="\n".join(f"- {m.content}" for m in recent) or "No recent context",
        )

    @staticmethod
    def build_user_prompt(user_input: str, context_text: Optional[str] = None) -> str:
        return _PLAN_USER.format(
            user_input=user_input,
            context_line=f"Context: {context_text}\n" if context_text else "",
        )

    async def plan(
        self,
        session_id: str,
        user_input: str,
        context_text: Optional[str] = None,
        tools: Optional[list[ToolDefinition]] = None,
        memories: Optional[list[MemoryEntry]] = None,
    ) -> Plan:
        """
        Produce a plan for user_input.

        Raises:
            PlanningError: no completion provider is configured. Every other
                           provider or parsing failure degrades to a single
                           respond_to_user step.
        """
        if not self._provider.is_configured:
            raise PlanningError("No LLM provider configured")

        system_prompt = self.build_system_prompt(tools or [], memories or [])
        user_prompt = self.build_user_prompt(user_input, context_text)

        try:
            raw = await self._provider.complete(
                system_prompt, [Message.user(user_prompt)], self._options
            )
        except ProviderUnavailable as e:
            raise PlanningError(str(e)) from e
        except ProviderError as e:
            log.error("planner.provider_failed", session_id=session_id, error=str(e))
            return degraded_plan("Failed to generate plan")

        try:
            plan = parse_plan(raw)
        except PlanningMalformed as e:
            log.warning("planner.parse_plan_failed", session_id=session_id, error=str(e), raw=raw[:200])
            return degraded_plan(str(e))

        log.info("planner.planned", session_id=session_id, steps=len(plan.steps))
        return plan


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

def parse_plan(text: str) -> Plan:
    """Raises PlanningMalformed when no usable plan object is present."""
    candidate = extract_json_object(_strip_fences(text))
    if candidate is None:
        raise PlanningMalformed("Failed to parse plan")

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise PlanningMalformed("Error parsing plan") from e

    if not isinstance(data, dict) or not isinstance(data.get("steps"), list) or not data["steps"]:
        raise PlanningMalformed("Error parsing plan")

    steps = []
    for raw_step in data["steps"]:
        if not isinstance(raw_step, dict):
            raise PlanningMalformed("Error parsing plan")
        step = dict(raw_step)
        if step.get("parameters") is None:
            step["parameters"] = {}
        if step.get("reasoning") is None:
            step["reasoning"] = ""
        if step.get("tool") is not None:
            step["tool"] = str(step["tool"])
        steps.append(step)

    try:
        return Plan(reasoning=str(data.get("reasoning") or ""), steps=steps)
    except ValidationError as e:
        raise PlanningMalformed("Error parsing plan") from e


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} object in text. Braces inside JSON
    strings (including escaped quotes) do not count.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one.
        start = text.find("{", start + 1)
    return None


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        end = len(lines) - 1 if lines[-1].strip() == "```" else len(lines)
        text = "\n".join(lines[1:end]).strip()
    return text

"""
safety/guardrails.py — Content-Safety Guard

Sits in front of and behind every turn. User input is checked before the
pipeline does any work; assembled output is checked before it reaches
the user.

Input flow (first match wins):
  1. prompt_injection_detection
  2. input_length_limit
  3. malicious_content_detection

Output flow (first match wins):
  1. output_length_limit
  2. information_leak_detection
  3. harmful_content_detection

Every match writes exactly one audit entry, awaited before the verdict is
returned. Clean text writes nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from orion.config.settings import GuardrailsConfig
from orion.exceptions import StoreError
from orion.observability.logger import get_logger
from orion.store.base import Store
from orion.store.models import GuardAction, GuardrailLogEntry

log = get_logger(__name__)

# Stored samples are capped regardless of sample_chars.
_MAX_STORED_SAMPLE = 500


# ─────────────────────────────────────────────────────────────────────────────
# Rule patterns
# ─────────────────────────────────────────────────────────────────────────────

PROMPT_INJECTION_PATTERNS: list[re.Pattern] = [
    re.compile(r"ignore\s+(previous|above|all)\s+instructions?", re.IGNORECASE),
    re.compile(r"system\s*:\s*(you are|act as|pretend)", re.IGNORECASE),
    re.compile(r"<\|(im_start|system|user)\|>", re.IGNORECASE),
    re.compile(r"\{.*(system|instruction|prompt).*\}", re.IGNORECASE),
    re.compile(r"(?:roleplay|jailbreak|override|bypass)", re.IGNORECASE),
    re.compile(r"tell me your (instructions|prompts?|system)", re.IGNORECASE),
]

MALICIOUS_CONTENT_PATTERNS: list[re.Pattern] = [
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),     # inline handlers: onclick=
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
]

INFORMATION_LEAK_PATTERNS: list[re.Pattern] = [
    re.compile(r"API[_\s]?KEY", re.IGNORECASE),
    re.compile(r"SECRET", re.IGNORECASE),
    re.compile(r"PASSWORD", re.IGNORECASE),
    re.compile(r"TOKEN", re.IGNORECASE),
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"<\|im_start\|>", re.IGNORECASE),
    re.compile(r"<\|system\|>", re.IGNORECASE),
]

HARMFUL_CONTENT_PATTERNS: list[re.Pattern] = [
    re.compile(r"(?:how to|instructions for).*(hack|crack|bypass|exploit)", re.IGNORECASE),
    re.compile(r"(?:create|make|build).*(virus|malware|ransomware|bomb|weapon)", re.IGNORECASE),
    re.compile(r"(?:illegal|unlawful).*(activity|action|method)", re.IGNORECASE),
]


def _matches_any(patterns: list[re.Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


@dataclass
class InputVerdict:
    allowed: bool
    action: GuardAction
    reason: Optional[str] = None
    rule: Optional[str] = None


_ALLOW = InputVerdict(allowed=True, action=GuardAction.ALLOW)


class Guardrails:
    """
    Evaluates user input and assembled output against content-safety rules.

    Usage:
        guard = Guardrails(store, settings.guardrails)
        verdict = await guard.evaluate_input(text, session_id)
        if not verdict.allowed:
            # reply "Input blocked: <verdict.reason>"
        ok = await guard.evaluate_output(response, session_id)
    """

    def __init__(self, store: Store, config: Optional[GuardrailsConfig] = None):
        self._store = store
        self._config = config or GuardrailsConfig()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def evaluate_input(self, text: str, session_id: Optional[str] = None) -> InputVerdict:
        if not self._config.enabled:
            return _ALLOW

        if _matches_any(PROMPT_INJECTION_PATTERNS, text):
            return await self._block(
                session_id,
                rule="prompt_injection_detection",
                sample=text,
                audit_reason="Prompt injection pattern detected",
                reason="Potential prompt injection detected",
            )

        if len(text) > self._config.max_input_chars:
            return await self._block(
                session_id,
                rule="input_length_limit",
                sample=text,
                audit_reason=f"Input exceeds maximum length: {len(text)} characters",
                reason="Input exceeds maximum length",
            )

        if _matches_any(MALICIOUS_CONTENT_PATTERNS, text):
            return await self._block(
                session_id,
                rule="malicious_content_detection",
                sample=text,
                audit_reason="Malicious content detected",
                reason="Malicious content detected",
            )

        return _ALLOW

    async def evaluate_output(self, text: str, session_id: Optional[str] = None) -> bool:
        if not self._config.enabled:
            return True

        if len(text) > self._config.max_output_chars:
            await self._audit(
                session_id,
                "output_length_limit",
                GuardAction.FILTER,
                text,
                f"Output exceeds maximum length: {len(text)} characters",
            )
            return False

        if _matches_any(INFORMATION_LEAK_PATTERNS, text):
            await self._audit(
                session_id,
                "information_leak_detection",
                GuardAction.FILTER,
                text,
                "Potential information leak detected in output",
            )
            return False

        if _matches_any(HARMFUL_CONTENT_PATTERNS, text):
            await self._audit(
                session_id,
                "harmful_content_detection",
                GuardAction.FILTER,
                text,
                "Potentially harmful content detected in output",
            )
            return False

        return True

    async def list_logs(
        self, session_id: Optional[str] = None, limit: int = 100
    ) -> list[GuardrailLogEntry]:
        """Recent audit entries, newest-first."""
        return await self._store.list_audit_logs(session_id=session_id, limit=limit)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _block(
        self,
        session_id: Optional[str],
        rule: str,
        sample: str,
        audit_reason: str,
        reason: str,
    ) -> InputVerdict:
        await self._audit(session_id, rule, GuardAction.BLOCK, sample, audit_reason)
        return InputVerdict(allowed=False, action=GuardAction.BLOCK, reason=reason, rule=rule)

    async def _audit(
        self,
        session_id: Optional[str],
        rule: str,
        action: GuardAction,
        text: str,
        reason: str,
    ) -> None:
        limit = min(self._config.sample_chars, _MAX_STORED_SAMPLE)
        log.warning(
            "guardrails.blocked" if action == GuardAction.BLOCK else "guardrails.filtered",
            rule=rule,
            session_id=session_id,
            reason=reason,
        )
        entry = GuardrailLogEntry(
            session_id=session_id,
            rule=rule,
            action=action,
            input=text[:limit],
            reason=reason,
        )
        try:
            await self._store.append_audit_log(entry)
        except StoreError as e:
            log.error("guardrails.audit_failed", rule=rule, error=str(e))

"""
exceptions.py — ORION Unified Error Hierarchy

All ORION-specific exceptions live here. Every layer of the pipeline
raises typed subclasses of OrionError — never bare Exception.

Import from here, not from individual modules:
    from orion.exceptions import ToolNotFound, ValidationRejected

Hierarchy:
    OrionError
    ├── ValidationRejected
    ├── ProviderUnavailable
    │   └── PlanningError
    ├── ProviderError
    ├── PlanningMalformed
    ├── ToolError
    │   ├── ToolNotFound
    │   ├── ToolExecutionError
    │   └── UnsupportedToolType
    ├── StoreError
    │   └── SessionNotFound
    └── SessionBusyError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class OrionError(Exception):
    """Base class for all ORION exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Guardrails
# ─────────────────────────────────────────────────────────────────────────────

class ValidationRejected(OrionError):
    """Input or output was blocked/filtered by a guardrail rule."""

    def __init__(self, rule: str, reason: str) -> None:
        self.rule = rule
        self.reason = reason
        super().__init__(reason)


# ─────────────────────────────────────────────────────────────────────────────
# Completion providers
# ─────────────────────────────────────────────────────────────────────────────

class ProviderUnavailable(OrionError):
    """No completion backend is configured (or every backend is unreachable)."""


class PlanningError(ProviderUnavailable):
    """The planner was asked to plan but has no completion provider."""


class ProviderError(OrionError):
    """A completion backend returned an error or timed out."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class PlanningMalformed(OrionError):
    """Provider output could not be parsed into a plan. Always recovered locally."""


# ─────────────────────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(OrionError):
    """Base for tool invocation errors."""


class ToolNotFound(ToolError):
    """Tool is unknown or inactive."""

    def __init__(self, tool_name: str, message: str = "") -> None:
        self.tool_name = tool_name
        super().__init__(message or f'Tool "{tool_name}" not found or inactive')


class ToolExecutionError(ToolError):
    """Transport failure, non-2xx response, or sandboxed expression failure."""


class UnsupportedToolType(ToolError):
    """The tool schema declares a kind the invoker does not know."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unsupported tool type: {kind}")


# ─────────────────────────────────────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────────────────────────────────────

class StoreError(OrionError):
    """A store operation (read or write) failed."""


class SessionNotFound(StoreError):
    """The requested session does not exist."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


# ─────────────────────────────────────────────────────────────────────────────
# Concurrency
# ─────────────────────────────────────────────────────────────────────────────

class SessionBusyError(OrionError):
    """A turn is already in flight for this session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} is busy with another turn")


__all__ = [
    "OrionError",
    "ValidationRejected",
    "ProviderUnavailable",
    "PlanningError",
    "ProviderError",
    "PlanningMalformed",
    "ToolError",
    "ToolNotFound",
    "ToolExecutionError",
    "UnsupportedToolType",
    "StoreError",
    "SessionNotFound",
    "SessionBusyError",
]

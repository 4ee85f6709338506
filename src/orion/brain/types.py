"""
brain/types.py — ORION Completion Data Models

Shared types used by every completion provider and by the pipeline
components that talk to them. Providers (OpenAI, Anthropic) map these into
their native request shapes.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class Message(BaseModel):
    """A single chat message passed to a completion provider."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)


class CompletionOptions(BaseModel):
    """
    Per-request completion configuration.

    model=None uses the provider's default model; fast=True selects the
    provider's cheaper model (used for titles and short replies).
    """
    model: Optional[str] = None
    fast: bool = False
    temperature: float = 0.7
    max_tokens: int = 500
    timeout_seconds: float = 30.0

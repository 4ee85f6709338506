"""
brain/__init__.py — ORION Completion Providers
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from orion.brain.provider import BaseCompletionProvider, ProviderChain
from orion.brain.types import CompletionOptions, Message, Provider, Role
from orion.observability.logger import get_logger

if TYPE_CHECKING:
    from orion.config.settings import Settings

__all__ = [
    "ProviderFactory",
    "BaseCompletionProvider",
    "ProviderChain",
    "CompletionOptions",
    "Message",
    "Provider",
    "Role",
]

log = get_logger(__name__)


class ProviderFactory:

    @staticmethod
    def create(provider: str, api_key: str, settings: "Settings") -> BaseCompletionProvider:
        provider = provider.lower().strip()
        llm = settings.llm

        if provider == Provider.OPENAI.value:
            from orion.brain.openai_provider import OpenAIProvider
            return OpenAIProvider(
                api_key=api_key,
                model=llm.openai_model,
                fast_model=llm.openai_fast_model,
            )

        if provider == Provider.ANTHROPIC.value:
            from orion.brain.anthropic_provider import AnthropicProvider
            return AnthropicProvider(
                api_key=api_key,
                model=llm.anthropic_model,
                fast_model=llm.anthropic_fast_model,
            )

        raise ValueError(f"Unknown completion provider: '{provider}'")

    @staticmethod
    def from_settings(settings: "Settings") -> ProviderChain:
        """
        Build the prioritized provider chain from llm.providers, skipping
        any provider without an API key. An empty chain is valid: the
        pipeline then answers with canned replies and planning is disabled.
        """
        providers = [
            ProviderFactory.create(name, settings.api_key_for(name) or "", settings)
            for name in settings.configured_providers
        ]
        if not providers:
            log.warning("brain.no_providers", configured=settings.llm.providers)
        else:
            log.info("brain.providers_ready", order=[p.name for p in providers])

        retry = settings.llm.retry
        return ProviderChain(
            providers,
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
        )

"""
brain/anthropic_provider.py — Anthropic Completion Provider

Supports the Claude 3.5 family. The system prompt is passed as the
top-level `system` parameter, never as a message.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional

import anthropic
from anthropic import AsyncAnthropic

from orion.brain.provider import BaseCompletionProvider
from orion.brain.types import CompletionOptions, Message, Provider, Role
from orion.exceptions import ProviderError
from orion.observability.logger import get_logger

log = get_logger(__name__)


def _translate_error(e: Exception) -> ProviderError:
    if isinstance(e, anthropic.AuthenticationError):
        return ProviderError(str(e), provider="anthropic", status_code=401)
    if isinstance(e, anthropic.RateLimitError):
        return ProviderError(str(e), provider="anthropic", status_code=429)
    if isinstance(e, anthropic.BadRequestError):
        return ProviderError(str(e), provider="anthropic", status_code=400)
    if isinstance(e, anthropic.APIConnectionError):
        return ProviderError(str(e), provider="anthropic")
    return ProviderError(str(e), provider="anthropic", status_code=getattr(e, "status_code", None))


class AnthropicProvider(BaseCompletionProvider):
    """Anthropic messages backend."""

    name = Provider.ANTHROPIC.value

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        fast_model: str = "claude-3-5-haiku-20241022",
        base_url: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        self.model = model
        self.fast_model = fast_model
        self._client = client or AsyncAnthropic(api_key=api_key, base_url=base_url)

    def _model_for(self, options: CompletionOptions) -> str:
        if options.model:
            return options.model
        return self.fast_model if options.fast else self.model

    @staticmethod
    def _to_provider_messages(
        system_prompt: str, messages: list[Message]
    ) -> tuple[str, list[dict]]:
        """
        Split system messages out of the list and merge consecutive
        same-role turns (the messages API requires alternation).
        """
        system_parts = [system_prompt] if system_prompt else []
        result: list[dict] = []
        for msg in messages:
            if msg.role == Role.SYSTEM:
                system_parts.append(msg.content)
                continue
            if result and result[-1]["role"] == msg.role.value:
                result[-1]["content"] += "\n" + msg.content
            else:
                result.append({"role": msg.role.value, "content": msg.content})
        return "\n\n".join(system_parts), result

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> str:
        model = self._model_for(options)
        system, ant_messages = self._to_provider_messages(system_prompt, messages)
        log.debug("anthropic.complete.start", model=model, message_count=len(ant_messages))
        try:
            response = await self._client.messages.create(
                model=model,
                system=system or anthropic.NOT_GIVEN,
                messages=ant_messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout_seconds,
            )
        except anthropic.APIError as e:
            raise _translate_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        log.debug("anthropic.complete.done", model=model, chars=len(text))
        return text

    async def stream(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        model = self._model_for(options)
        system, ant_messages = self._to_provider_messages(system_prompt, messages)
        log.debug("anthropic.stream.start", model=model, message_count=len(ant_messages))
        try:
            async with self._client.messages.stream(
                model=model,
                system=system or anthropic.NOT_GIVEN,
                messages=ant_messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout_seconds,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as e:
            raise _translate_error(e) from e

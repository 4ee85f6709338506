"""
brain/openai_provider.py — OpenAI Completion Provider

Supports GPT-4o / GPT-4o-mini and any OpenAI-compatible endpoint.
Normalises SDK errors into ProviderError so the chain can decide whether
to retry or fail over.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional

import openai
from openai import AsyncOpenAI

from orion.brain.provider import BaseCompletionProvider
from orion.brain.types import CompletionOptions, Message, Provider
from orion.exceptions import ProviderError
from orion.observability.logger import get_logger

log = get_logger(__name__)


def _translate_error(e: Exception) -> ProviderError:
    if isinstance(e, openai.AuthenticationError):
        return ProviderError(str(e), provider="openai", status_code=401)
    if isinstance(e, openai.RateLimitError):
        return ProviderError(str(e), provider="openai", status_code=429)
    if isinstance(e, openai.BadRequestError):
        return ProviderError(str(e), provider="openai", status_code=400)
    if isinstance(e, openai.APIConnectionError):
        return ProviderError(str(e), provider="openai")
    return ProviderError(str(e), provider="openai", status_code=getattr(e, "status_code", None))


class OpenAIProvider(BaseCompletionProvider):
    """OpenAI chat-completions backend."""

    name = Provider.OPENAI.value

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        fast_model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.fast_model = fast_model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    def _model_for(self, options: CompletionOptions) -> str:
        if options.model:
            return options.model
        return self.fast_model if options.fast else self.model

    @staticmethod
    def _to_provider_messages(system_prompt: str, messages: list[Message]) -> list[dict]:
        result = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})
        for msg in messages:
            result.append({"role": msg.role.value, "content": msg.content})
        return result

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> str:
        model = self._model_for(options)
        log.debug("openai.complete.start", model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=self._to_provider_messages(system_prompt, messages),
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout_seconds,
            )
        except openai.APIError as e:
            raise _translate_error(e) from e

        text = response.choices[0].message.content or ""
        log.debug("openai.complete.done", model=model, chars=len(text))
        return text

    async def stream(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        model = self._model_for(options)
        log.debug("openai.stream.start", model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=self._to_provider_messages(system_prompt, messages),
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout_seconds,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as e:
            raise _translate_error(e) from e

"""
brain/provider.py — Completion Provider Interface + Prioritized Failover

All provider implementations (OpenAI, Anthropic) subclass
BaseCompletionProvider and implement complete() and stream().

  - _complete_with_retry() — exponential backoff on transient errors
  - ProviderChain — a prioritized list of providers selected at startup.
    Each provider is tried in order; the chain itself satisfies the
    provider interface, so callers never branch on which backend is live.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Optional

from orion.brain.types import CompletionOptions, Message
from orion.exceptions import ProviderError, ProviderUnavailable
from orion.observability.logger import get_logger

log = get_logger(__name__)


class BaseCompletionProvider(ABC):
    """
    Abstract base for all completion backends.

    Subclasses must implement:
      - complete() -> full text for a system prompt + message list
      - stream()   -> async iterator of text deltas (finite, not restartable)
    """

    name: str = "base"

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> str:
        ...

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


def _is_transient(error: ProviderError) -> bool:
    """Timeouts, connection failures (no status), 429 and 5xx are worth retrying."""
    code = error.status_code
    return code is None or code == 429 or code >= 500


async def _complete_with_retry(
    provider: BaseCompletionProvider,
    system_prompt: str,
    messages: list[Message],
    options: CompletionOptions,
    max_attempts: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
) -> str:
    """
    Call provider.complete() bounded by options.timeout_seconds, retrying
    transient ProviderErrors with exponential backoff.

    Backoff formula: min(base_delay * 2^attempt + jitter, max_delay)
    """
    last_error: ProviderError | None = None

    for attempt in range(max_attempts):
        try:
            return await asyncio.wait_for(
                provider.complete(system_prompt, messages, options),
                timeout=options.timeout_seconds,
            )
        except asyncio.TimeoutError:
            last_error = ProviderError(
                f"Completion timed out after {options.timeout_seconds}s",
                provider=provider.name,
            )
        except ProviderError as e:
            if not _is_transient(e):
                raise
            last_error = e

        if attempt == max_attempts - 1:
            break

        jitter = random.uniform(0, 0.25)
        delay = min(base_delay * (2 ** attempt) + jitter, max_delay)
        log.warning(
            "provider.retrying",
            provider=provider.name,
            attempt=attempt + 1,
            max_attempts=max_attempts,
            delay_s=round(delay, 2),
            error=str(last_error),
        )
        await asyncio.sleep(delay)

    raise last_error  # type: ignore[misc]


async def _bounded_stream(
    provider: BaseCompletionProvider,
    system_prompt: str,
    messages: list[Message],
    options: CompletionOptions,
) -> AsyncIterator[str]:
    """
    Relay provider.stream() deltas until options.timeout_seconds has elapsed
    for the whole stream, then raise ProviderError. The deadline covers the
    first delta and every gap between deltas.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + options.timeout_seconds
    deltas = provider.stream(system_prompt, messages, options).__aiter__()
    try:
        while True:
            remaining = max(deadline - loop.time(), 0.0)
            try:
                delta = await asyncio.wait_for(deltas.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                log.warning(
                    "provider.stream_timeout",
                    provider=provider.name,
                    timeout_s=options.timeout_seconds,
                )
                raise ProviderError(
                    f"Stream timed out after {options.timeout_seconds}s",
                    provider=provider.name,
                ) from None
            yield delta
    finally:
        aclose = getattr(deltas, "aclose", None)
        if aclose is not None:
            await aclose()


class ProviderChain(BaseCompletionProvider):
    """
    Prioritized failover across completion providers.

    Behaviour:
      1. complete(): each provider in priority order, each with retries.
         The first success wins; if all fail a ProviderError is raised.
      2. stream(): each provider in order, but failover only happens before
         the first delta is yielded. Once text has reached the caller a
         failure propagates (the stream is not restartable). Each provider's
         stream is bounded by options.timeout_seconds as a whole.
      3. An empty chain raises ProviderUnavailable.

    Usage:
        chain = ProviderChain([OpenAIProvider(...), AnthropicProvider(...)])
        text = await chain.complete(system, [Message.user("hi")], options)
    """

    name = "chain"

    def __init__(
        self,
        providers: Optional[list[BaseCompletionProvider]] = None,
        max_attempts: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ):
        self._providers = list(providers or [])
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def providers(self) -> list[BaseCompletionProvider]:
        return list(self._providers)

    @property
    def is_configured(self) -> bool:
        return bool(self._providers)

    def _require_providers(self) -> None:
        if not self._providers:
            raise ProviderUnavailable("No completion provider configured")

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> str:
        self._require_providers()
        last_error: ProviderError | None = None

        for i, provider in enumerate(self._providers):
            if i > 0:
                log.warning(
                    "provider.failing_over",
                    from_provider=self._providers[i - 1].name,
                    to_provider=provider.name,
                    reason=str(last_error),
                )
            try:
                return await _complete_with_retry(
                    provider,
                    system_prompt,
                    messages,
                    options,
                    max_attempts=self._max_attempts,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                )
            except ProviderError as e:
                last_error = e
                log.error(
                    "provider.exhausted",
                    provider=provider.name,
                    error=str(e),
                    will_try_fallback=i < len(self._providers) - 1,
                )

        raise ProviderError(
            f"All completion providers failed. Last error: {last_error}",
            provider="all",
        )

    async def stream(
        self,
        system_prompt: str,
        messages: list[Message],
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        self._require_providers()
        last_error: ProviderError | None = None

        for provider in self._providers:
            started = False
            try:
                async for delta in _bounded_stream(provider, system_prompt, messages, options):
                    started = True
                    yield delta
                return
            except ProviderError as e:
                if started:
                    raise
                last_error = e
                log.warning("provider.stream_failed", provider=provider.name, error=str(e))

        raise ProviderError(
            f"All completion providers failed to stream. Last error: {last_error}",
            provider="all",
        )

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self._providers) or "empty"
        return f"<ProviderChain [{names}]>"

"""
agent/naming.py — Session display names

After a settled turn, an unnamed session gets a short title derived from
its first substantive user message. The title comes from the fast model
when a provider is configured, otherwise (or on provider failure) from
keyword extraction.

The name is written once and never overwritten.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Awaitable, Callable, Optional

from orion.brain.provider import ProviderChain
from orion.brain.types import CompletionOptions, Message
from orion.config.settings import NamingConfig
from orion.exceptions import OrionError
from orion.observability.logger import get_logger
from orion.store.base import Store

log = get_logger(__name__)

_TITLE_SYSTEM = (
    "You are a helpful assistant that generates short, descriptive titles for "
    "conversations. Generate a concise title (3-6 words maximum) that captures "
    "the main topic, question, or intent. Respond with ONLY the title, no quotes "
    "or extra text."
)

_NON_SUBSTANTIVE: list[re.Pattern] = [
    re.compile(r"^(hi|hello|hey|yo|sup|greetings)(\s|!|\.)*$", re.IGNORECASE),
    re.compile(r"^(thanks|thank you|thx|ok|okay|yes|no|yep|nope)(\s|!|\.)*$", re.IGNORECASE),
    re.compile(r"^(good morning|good evening|good afternoon)(\s|!|\.)*$", re.IGNORECASE),
    re.compile(r"^(how are you|what's up|whats up)(\?|\s|!|\.)*$", re.IGNORECASE),
    re.compile(r"^(bye|goodbye|see you|later|cya)(\s|!|\.)*$", re.IGNORECASE),
]

_QUESTION_WORDS = re.compile(
    r"\b(what|why|how|when|where|who|can|could|would|should|is|are|do|does)\b",
    re.IGNORECASE,
)
_CONTENT_WORDS = re.compile(
    r"\b(help|need|want|issue|problem|question|about|regarding|looking|trying"
    r"|create|make|build|fix|error)\b",
    re.IGNORECASE,
)

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "about", "as", "into", "through", "during", "before",
    "after", "above", "below", "between", "under", "can", "you", "i", "me",
    "my", "we", "us",
})

# broadcast(session_id, event, data)
Broadcast = Callable[[str, str, dict], Awaitable[None]]


def is_substantive(message: str, min_chars: int = 10, long_chars: int = 20) -> bool:
    trimmed = message.strip().lower()
    if len(trimmed) < min_chars:
        return False
    if any(p.match(trimmed) for p in _NON_SUBSTANTIVE):
        return False
    return (
        bool(_QUESTION_WORDS.search(trimmed))
        or bool(_CONTENT_WORDS.search(trimmed))
        or len(trimmed) > long_chars
    )


def extract_keywords(message: str, max_keywords: int = 5) -> str:
    cleaned = re.sub(r"[^\w\s]", "", message.lower())
    words = [w for w in cleaned.split() if len(w) > 3 and w not in STOP_WORDS]
    title = " ".join(w[:1].upper() + w[1:] for w in words[:max_keywords])
    return title or message[:50]


def clean_name(name: str, max_length: int = 50) -> str:
    name = re.sub(r"['\"]", "", name).strip()
    if len(name) > max_length:
        name = name[: max_length - 3] + "..."
    return name


class SessionNamer:
    """
    Usage:
        namer = SessionNamer(store, chain, settings.naming, broadcast=gateway.broadcast)
        fire_and_forget(namer.maybe_name(session_id, text), label="session_naming", session_id=session_id)
    """

    def __init__(
        self,
        store: Store,
        provider: ProviderChain,
        config: Optional[NamingConfig] = None,
        broadcast: Optional[Broadcast] = None,
        title_options: Optional[CompletionOptions] = None,
    ):
        self._store = store
        self._provider = provider
        self._config = config or NamingConfig()
        self._broadcast = broadcast
        self._options = title_options or CompletionOptions(fast=True, max_tokens=20)
        # session_id -> [lock, holders + waiters]; dropped when the count reaches zero.
        self._locks: dict[str, list] = {}

    async def maybe_name(self, session_id: str, user_message: str) -> Optional[str]:
        """Returns the new name, or None when naming was skipped. Never raises OrionError."""
        if not self._config.enabled:
            return None
        # Read-check-write is serialised per session: a name is assigned at most once.
        entry = self._locks.setdefault(session_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                return await self._name(session_id, user_message)
        except OrionError as e:
            log.error("naming.failed", session_id=session_id, error=str(e))
            return None
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(session_id, None)

    async def _name(self, session_id: str, user_message: str) -> Optional[str]:
        session = await self._store.get_session(session_id)
        if session is None or session.metadata.get("name"):
            log.debug("naming.already_named", session_id=session_id)
            return None

        cfg = self._config
        if not is_substantive(user_message, cfg.min_chars, cfg.long_message_chars):
            log.debug("naming.skipped", session_id=session_id, sample=user_message[:30])
            return None

        name = clean_name(await self._generate(user_message), cfg.max_length)
        if not name:
            return None

        await self._store.update_session_metadata(session_id, {
            "name": name,
            "name_generated_at": time.time(),
            "named_from_message": user_message[:100],
        })
        log.info("naming.assigned", session_id=session_id, name=name)

        if self._broadcast is not None:
            await self._broadcast(
                session_id, "session_name_updated", {"sessionId": session_id, "name": name}
            )
        return name

    async def _generate(self, user_message: str) -> str:
        if not self._provider.is_configured:
            return extract_keywords(user_message, self._config.max_keywords)
        try:
            title = await self._provider.complete(
                _TITLE_SYSTEM,
                [Message.user(f'Generate a short title for this user query: "{user_message}"')],
                self._options,
            )
        except OrionError as e:
            log.warning("naming.title_failed", error=str(e))
            return extract_keywords(user_message, self._config.max_keywords)
        return title.strip() or user_message[:50]

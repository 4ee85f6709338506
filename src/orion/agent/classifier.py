"""
agent/classifier.py — Fast-path vs planning heuristic

Cheap keyword/pattern routing decided before any provider call:
  1. canned greetings / acknowledgements, short wh-questions and short
     pronoun-led statements → FAST
  2. otherwise any tool keyword present → PLANNING
  3. otherwise → FAST
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import Enum
from typing import Optional

from orion.config.settings import ClassifierConfig

TOOL_KEYWORDS: tuple[str, ...] = (
    "search", "find", "look up", "weather", "calculate",
    "translate", "create", "generate", "make", "build",
    "send", "email", "message", "book", "schedule", "remind",
)


class Route(str, Enum):
    FAST = "fast_path"
    PLANNING = "planning"


def _simple_patterns(short_chars: int) -> list[re.Pattern]:
    return [
        re.compile(r"(hi|hello|hey|yo|sup|okay|ok|yes|no|thanks|thank you)", re.IGNORECASE),
        re.compile(r"(what|who|how|why|when|where)\s+.{0,%d}" % short_chars, re.IGNORECASE),
        re.compile(r"(i|you|we|it|that|this)\s+.{0,%d}" % short_chars, re.IGNORECASE),
    ]


class Classifier:
    """
    Usage:
        classifier = Classifier.from_config(settings.classifier)
        route = classifier.classify("send John an email")
    """

    def __init__(
        self,
        tool_keywords: Optional[Sequence[str]] = None,
        short_chars: int = 50,
    ):
        self._keywords = tuple(k.lower() for k in (tool_keywords or TOOL_KEYWORDS))
        self._simple = _simple_patterns(short_chars)

    @classmethod
    def from_config(cls, config: ClassifierConfig) -> Classifier:
        return cls(tool_keywords=config.tool_keywords, short_chars=config.short_chars)

    def classify(self, text: str) -> Route:
        stripped = text.strip()
        if any(p.fullmatch(stripped) for p in self._simple):
            return Route.FAST
        lowered = stripped.lower()
        if any(k in lowered for k in self._keywords):
            return Route.PLANNING
        return Route.FAST


_default = Classifier()


def classify(text: str) -> Route:
    return _default.classify(text)

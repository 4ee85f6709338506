"""
tests/unit/test_naming.py — Session naming + classifier tests
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from orion.agent.classifier import Classifier, Route, classify
from orion.agent.naming import SessionNamer, clean_name, extract_keywords, is_substantive
from orion.config.settings import ClassifierConfig, NamingConfig
from orion.exceptions import StoreError
from orion.store.memory_store import InMemoryStore
from orion.store.models import Session
from tests.helpers import ScriptedProvider, chain_of, provider_failure


# ─────────────────────────────────────────────────────────────────────────────
# Classifier
# ─────────────────────────────────────────────────────────────────────────────

class TestClassifier:
    @pytest.mark.parametrize("text", ["hi", "Hello", "ok", "thanks", "thank you", "  yes  "])
    def test_greetings_fast(self, text):
        assert classify(text) == Route.FAST

    @pytest.mark.parametrize("text", [
        "schedule a meeting and email John about it",
        "search for flights to Tokyo",
        "Please calculate 15% of 80",
        "remind me to call mom",
    ])
    def test_tool_keywords_plan(self, text):
        assert classify(text) == Route.PLANNING

    def test_short_question_fast_even_with_keyword(self):
        assert classify("what can you find for me") == Route.FAST

    def test_default_fast(self):
        assert classify("tell me a joke about cats") == Route.FAST

    def test_custom_keywords(self):
        classifier = Classifier(tool_keywords=("deploy",))
        assert classifier.classify("deploy the app now please") == Route.PLANNING
        assert classifier.classify("search the docs") == Route.FAST

    def test_from_config(self):
        text = "what should I search for in Tokyo"
        assert classify(text) == Route.FAST

        classifier = Classifier.from_config(ClassifierConfig(short_chars=20))
        assert classifier.classify(text) == Route.PLANNING
        assert classifier.classify("hi") == Route.FAST

        custom = Classifier.from_config(ClassifierConfig(tool_keywords=["Deploy"]))
        assert custom.classify("please deploy the staging build") == Route.PLANNING


# ─────────────────────────────────────────────────────────────────────────────
# Substantiveness + title helpers
# ─────────────────────────────────────────────────────────────────────────────

class TestSubstantive:
    @pytest.mark.parametrize("text", ["ok", "thanks", "hi", "hello!!", "good morning", "bye"])
    def test_non_substantive(self, text):
        assert is_substantive(text) is False

    @pytest.mark.parametrize("text", [
        "how do I reset my password",
        "I need help with billing",
        "book a table for two tonight at eight",
    ])
    def test_substantive(self, text):
        assert is_substantive(text) is True

    def test_greeting_phrase_over_min_length_still_skipped(self):
        assert is_substantive("how are you?") is False

    def test_short_plain_message_without_signal(self):
        assert is_substantive("pizza tonight") is False


class TestTitleHelpers:
    def test_keywords_title_cased(self):
        assert extract_keywords("how do I reset my password?") == "Reset Password"

    def test_keywords_limited(self):
        title = extract_keywords("alpha bravo charlie delta echoes foxtrot golf", max_keywords=3)
        assert title == "Alpha Bravo Charlie"

    def test_keywords_fall_back_to_prefix(self):
        assert extract_keywords("is it on?") == "is it on?"

    def test_clean_strips_quotes_and_truncates(self):
        assert clean_name('"Password Reset"') == "Password Reset"
        long = "x" * 60
        cleaned = clean_name(long)
        assert len(cleaned) == 50
        assert cleaned.endswith("...")


# ─────────────────────────────────────────────────────────────────────────────
# SessionNamer
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def broadcast():
    return AsyncMock()


class TestSessionNamer:
    @pytest.mark.asyncio
    async def test_names_from_provider_and_broadcasts(self, store, session, broadcast):
        provider = ScriptedProvider(['"Password Reset Help"'])
        namer = SessionNamer(store, chain_of(provider), broadcast=broadcast)

        name = await namer.maybe_name(session.id, "how do I reset my password")

        assert name == "Password Reset Help"
        stored = await store.get_session(session.id)
        assert stored.metadata["name"] == "Password Reset Help"
        assert stored.metadata["named_from_message"] == "how do I reset my password"
        assert "name_generated_at" in stored.metadata
        broadcast.assert_awaited_once_with(
            session.id, "session_name_updated", {"sessionId": session.id, "name": "Password Reset Help"}
        )
        assert provider.calls[0][2].fast is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["ok", "thanks", "hi"])
    async def test_skips_non_substantive(self, store, session, broadcast, text):
        provider = ScriptedProvider(["Title"])
        namer = SessionNamer(store, chain_of(provider), broadcast=broadcast)
        assert await namer.maybe_name(session.id, text) is None
        assert provider.calls == []
        assert (await store.get_session(session.id)).name is None
        broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_never_overwrites(self, store, broadcast):
        named = await store.create_session(Session(user_id="u", metadata={"name": "Existing"}))
        namer = SessionNamer(store, chain_of(ScriptedProvider(["New"])), broadcast=broadcast)
        assert await namer.maybe_name(named.id, "how do I reset my password") is None
        assert (await store.get_session(named.id)).name == "Existing"

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back_to_keywords(self, store, session):
        namer = SessionNamer(store, chain_of(ScriptedProvider([provider_failure()])))
        assert await namer.maybe_name(session.id, "how do I reset my password") == "Reset Password"

    @pytest.mark.asyncio
    async def test_no_provider_uses_keywords(self, store, session):
        namer = SessionNamer(store, chain_of())
        assert await namer.maybe_name(session.id, "I need help with billing") == "Need Help Billing"

    @pytest.mark.asyncio
    async def test_long_title_truncated(self, store, session):
        namer = SessionNamer(store, chain_of(ScriptedProvider(["T" * 80])))
        name = await namer.maybe_name(session.id, "how do I reset my password")
        assert name == "T" * 47 + "..."

    @pytest.mark.asyncio
    async def test_disabled(self, store, session):
        namer = SessionNamer(store, chain_of(ScriptedProvider(["T"])), NamingConfig(enabled=False))
        assert await namer.maybe_name(session.id, "how do I reset my password") is None

    @pytest.mark.asyncio
    async def test_store_error_swallowed(self):
        class FailingStore(InMemoryStore):
            async def update_session_metadata(self, session_id, updates):
                raise StoreError("write failed")

        failing = FailingStore()
        created = await failing.create_session(Session(user_id="u"))
        namer = SessionNamer(failing, chain_of(ScriptedProvider(["Title"])))
        assert await namer.maybe_name(created.id, "how do I reset my password") is None


class TestConcurrentNaming:
    @pytest.mark.asyncio
    async def test_overlapping_turns_name_session_once(self, store, session, broadcast):
        release = asyncio.Event()

        class OutOfOrderProvider(ScriptedProvider):
            async def complete(self, system_prompt, messages, options):
                self.calls.append((system_prompt, messages, options))
                if len(self.calls) == 1:
                    await release.wait()
                    return "First Title"
                return "Second Title"

        provider = OutOfOrderProvider()
        namer = SessionNamer(store, chain_of(provider), broadcast=broadcast)

        first = asyncio.create_task(namer.maybe_name(session.id, "how do I reset my password"))
        second = asyncio.create_task(namer.maybe_name(session.id, "I need help with billing"))
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(first, second)

        assert results == ["First Title", None]
        assert (await store.get_session(session.id)).name == "First Title"
        broadcast.assert_awaited_once()
        assert len(provider.calls) == 1
        assert namer._locks == {}

    @pytest.mark.asyncio
    async def test_different_sessions_named_independently(self, store, broadcast):
        a = await store.create_session(Session(user_id="u"))
        b = await store.create_session(Session(user_id="u"))
        namer = SessionNamer(store, chain_of(ScriptedProvider(["Shared Title"])), broadcast=broadcast)

        await asyncio.gather(
            namer.maybe_name(a.id, "how do I reset my password"),
            namer.maybe_name(b.id, "how do I reset my password"),
        )

        assert (await store.get_session(a.id)).name == "Shared Title"
        assert (await store.get_session(b.id)).name == "Shared Title"
        assert broadcast.await_count == 2

"""
tests/unit/test_background.py — Background task tracking tests
"""

from __future__ import annotations

import asyncio

import pytest

from orion.agent.utils import (
    drain_background_tasks,
    fire_and_forget,
    pending_background_tasks,
)


class TestFireAndForget:
    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        async def boom():
            raise RuntimeError("naming exploded")

        task = fire_and_forget(boom(), label="session_naming", session_id="s1")
        assert await drain_background_tasks() == 0
        assert task.done()
        assert isinstance(task.exception(), RuntimeError)
        assert pending_background_tasks("s1") == 0

    @pytest.mark.asyncio
    async def test_pending_counted_per_session(self):
        release = asyncio.Event()

        async def wait():
            await release.wait()

        fire_and_forget(wait(), label="text_input", session_id="s1")
        fire_and_forget(wait(), label="session_naming", session_id="s1")
        fire_and_forget(wait(), label="text_input", session_id="s2")
        await asyncio.sleep(0)

        assert pending_background_tasks("s1") == 2
        assert pending_background_tasks("s2") == 1
        assert pending_background_tasks("s3") == 0

        release.set()
        await drain_background_tasks()
        assert pending_background_tasks() == 0


class TestDrain:
    @pytest.mark.asyncio
    async def test_stragglers_cancelled(self):
        task = fire_and_forget(asyncio.sleep(10), label="text_input", session_id="s1")

        remaining = await drain_background_tasks(timeout=0.05, cancel=True)

        assert remaining == 1
        assert task.cancelled()
        assert pending_background_tasks() == 0

    @pytest.mark.asyncio
    async def test_without_cancel_tasks_keep_running(self):
        release = asyncio.Event()
        task = fire_and_forget(release.wait(), label="text_input")

        assert await drain_background_tasks(timeout=0.01) == 1
        assert not task.done()

        release.set()
        await drain_background_tasks()
        assert task.done()

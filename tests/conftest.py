"""
Fixtures shared by the unit suite. Test doubles live in tests/helpers.py.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from orion.store.memory_store import InMemoryStore
from orion.store.models import Session
from tests.helpers import RecordingTransport


@pytest.fixture
def store():
    return InMemoryStore()


@pytest_asyncio.fixture
async def session(store):
    return await store.create_session(Session(user_id="user-1"))


@pytest.fixture
def transport():
    return RecordingTransport()

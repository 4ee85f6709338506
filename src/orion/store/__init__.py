"""
store/__init__.py — ORION Persistence
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from orion.store.base import Store
from orion.store.memory_store import InMemoryStore
from orion.store.sqlite_store import SqliteStore

if TYPE_CHECKING:
    from orion.config.settings import StoreConfig

__all__ = ["Store", "InMemoryStore", "SqliteStore", "create_store"]


def create_store(config: "StoreConfig") -> Store:
    """Build the configured backend. The caller must `await store.init()`."""
    if config.backend == "memory":
        return InMemoryStore()
    return SqliteStore(config.sqlite_path)

"""
agent/utils.py — Background work tracking

Turns spawned off the gateway read loop and post-turn side effects
(session naming) run as tracked background tasks:

  - a strong reference is held until the task finishes
  - each task is tagged with a label and, when known, its session id,
    so status() can report in-flight work per session
  - failures are logged from a done-callback, never raised into the loop
  - shutdown drains what is left and cancels stragglers
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Optional

from orion.observability.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class _TaskTag:
    label: str
    session_id: Optional[str]


# Strong references; entries leave in the done-callback.
_BG_TASKS: dict[asyncio.Task, _TaskTag] = {}


def fire_and_forget(
    coro: Coroutine[Any, Any, Any],
    label: str = "bg_task",
    session_id: Optional[str] = None,
) -> asyncio.Task:
    """Schedule `coro` as a tracked background task and return it."""
    task = asyncio.create_task(coro, name=f"{label}:{session_id or '-'}")
    tag = _TaskTag(label, session_id)
    _BG_TASKS[task] = tag

    def _on_done(t: asyncio.Task) -> None:
        _BG_TASKS.pop(t, None)
        if t.cancelled():
            log.debug("bg_task.cancelled", label=tag.label, session_id=tag.session_id)
            return
        exc = t.exception()
        if exc is not None:
            log.warning(
                "bg_task.failed",
                label=tag.label,
                session_id=tag.session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    task.add_done_callback(_on_done)
    return task


def pending_background_tasks(session_id: Optional[str] = None) -> int:
    """In-flight tracked tasks, optionally only those tagged with session_id."""
    return sum(
        1 for t, tag in _BG_TASKS.items()
        if not t.done() and (session_id is None or tag.session_id == session_id)
    )


async def drain_background_tasks(timeout: float = 5.0, cancel: bool = False) -> int:
    """
    Wait up to `timeout` seconds for in-flight tasks.

    Returns how many were still running afterwards. With cancel=True those
    are cancelled and awaited, so nothing outlives shutdown.
    """
    pending = [t for t in _BG_TASKS if not t.done()]
    if not pending:
        return 0
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    if not still_running:
        return 0

    labels = sorted({_BG_TASKS[t].label for t in still_running if t in _BG_TASKS})
    log.warning("bg_task.drain_timeout", remaining=len(still_running), labels=labels, cancel=cancel)
    if cancel:
        for t in still_running:
            t.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
    return len(still_running)

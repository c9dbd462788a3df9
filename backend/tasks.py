"""
asyncio task helpers shared by components that own background tasks.

Rules:
- A task never cancels or awaits itself (teardown is often triggered from
  inside one of the owned tasks)
- Cancelled and failed tasks are awaited without re-raising
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable


def current_task() -> asyncio.Task[Any] | None:
    """The running task, or None outside a running loop."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def cancel_others(tasks: Iterable[asyncio.Task[Any] | None]) -> None:
    """Cancel every unfinished task except the caller's own."""
    current = current_task()
    for task in tasks:
        if task is not None and task is not current and not task.done():
            task.cancel()


async def wait_others(tasks: Iterable[asyncio.Task[Any]]) -> None:
    """Wait for every task except the caller's own to finish."""
    current = current_task()
    pending = [t for t in tasks if t is not current]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

"""
Timing helpers for client round-trips.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER JSONL event per measurement via observability.logger
- Never aggregate

Design notes:
- Durations use monotonic time
- Event timestamps (ts_ms) use wall-clock time for log correlation
- The `timed()` context manager is the only entry point, so timers cannot leak
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block and emit a METRIC_TIMER event.

    Yields a mutable dict; anything the block stores in it is merged into
    the event's details (e.g. HTTP status, payload size).

    Guarantees:
    - Metric is emitted exactly once, also when the block raises
    - Exceptions inside the block are not suppressed

    Usage:
        with timed("transcription_round_trip", session_id=sid) as extra:
            resp = await client.post(...)
            extra["status"] = resp.status_code
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "session_id": session_id,
            "details": {**(details or {}), **extra},
        })

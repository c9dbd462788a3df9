"""
JSONL event logger for the client.

Rules:
- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- Never raises; logging must not take down an event-loop turn

Verbose per-message records go through log_debug(), which is a no-op unless
debug output was enabled at startup (AppConfig.debug).
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_debug_enabled: bool = False


def now_ms() -> int:
    """Wall-clock milliseconds, used for ts_ms fields only."""
    return time.time_ns() // 1_000_000


def set_debug(enabled: bool) -> None:
    """Enable or disable log_debug() output process-wide."""
    global _debug_enabled  # pylint: disable=global-statement
    _debug_enabled = enabled


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, event_type, session_id where known

    This function:
    - Serializes to JSON
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log_debug(event: Mapping[str, Any]) -> None:
    """log_event() gated on the debug flag."""
    if _debug_enabled:
        log_event(event)

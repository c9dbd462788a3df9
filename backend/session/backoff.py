"""
Reconnect backoff policy.

Purpose:
- Centralize the reconnect rules for SessionTransport
- Keep the transport's timer code free of policy arithmetic
- Allow deterministic tests of the retry budget

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class BackoffPolicy:
    """
    Capped exponential backoff bounded by attempt count and total delay.

    interval_ms:
        Delay before the first reconnect attempt.

    max_delay_ms:
        Cap on any single delay.

    max_attempts:
        Maximum reconnect attempts (the initial connect is not counted).

    max_total_delay_ms:
        Cap on the cumulative delay across one outage. An attempt whose delay
        would push the total past this cap is not scheduled.
    """
    interval_ms: int
    max_delay_ms: int
    max_attempts: int
    max_total_delay_ms: int

    def __post_init__(self) -> None:
        if self.interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")
        if self.max_delay_ms < self.interval_ms:
            raise ValueError("max_delay_ms must be >= interval_ms")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class ReconnectAttempt:
    """
    Immutable outage bookkeeping.

    Semantics:
    - attempt == 0 means no reconnect has been scheduled in this outage.
    - attempt >= 1 is the Nth reconnect attempt.
    - total_delay_ms is the sum of delays already scheduled in this outage.
    """
    attempt: int = 0
    total_delay_ms: int = 0


def reset_attempt() -> ReconnectAttempt:
    """Returns fresh outage bookkeeping (called after a successful open)."""
    return ReconnectAttempt()


def delay_for_attempt(policy: BackoffPolicy, attempt: int) -> int:
    """
    Delay before reconnect attempt N (1-based).

    min(interval * 2**(N-1), max_delay)
    """
    if attempt < 1:
        return 0
    # Bound the exponent; the cap makes larger values irrelevant
    exp = min(attempt - 1, 30)
    return min(policy.interval_ms * (2 ** exp), policy.max_delay_ms)


def next_attempt(
    policy: BackoffPolicy,
    current: ReconnectAttempt,
) -> tuple[ReconnectAttempt, int] | None:
    """
    Decide whether another reconnect may be scheduled.

    Returns:
        (advanced bookkeeping, delay_ms) if allowed,
        None if either the attempt budget or the total-delay budget is spent.
    """
    if current.attempt >= policy.max_attempts:
        return None

    attempt = current.attempt + 1
    delay_ms = delay_for_attempt(policy, attempt)

    if current.total_delay_ms + delay_ms > policy.max_total_delay_ms:
        return None

    return (
        ReconnectAttempt(
            attempt=attempt,
            total_delay_ms=current.total_delay_ms + delay_ms,
        ),
        delay_ms,
    )

# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from session.backoff import (
    BackoffPolicy,
    ReconnectAttempt,
    delay_for_attempt,
    next_attempt,
    reset_attempt,
)


def _policy(**overrides: int) -> BackoffPolicy:
    values = {
        "interval_ms": 1000,
        "max_delay_ms": 5000,
        "max_attempts": 10,
        "max_total_delay_ms": 1_000_000,
    }
    values.update(overrides)
    return BackoffPolicy(**values)


def test_delay_is_capped_exponential() -> None:
    policy = _policy()

    delays = [delay_for_attempt(policy, n) for n in range(1, 6)]

    assert delays == [1000, 2000, 4000, 5000, 5000]


def test_attempt_budget_is_enforced() -> None:
    policy = _policy(max_attempts=2)
    current = reset_attempt()

    first = next_attempt(policy, current)
    assert first is not None
    current, delay = first
    assert (current.attempt, delay) == (1, 1000)

    second = next_attempt(policy, current)
    assert second is not None
    current, delay = second
    assert (current.attempt, delay) == (2, 2000)

    assert next_attempt(policy, current) is None


def test_total_delay_budget_is_enforced() -> None:
    policy = _policy(max_total_delay_ms=2500)

    decision = next_attempt(policy, ReconnectAttempt(attempt=1, total_delay_ms=1000))
    # Attempt 2 would wait 2000ms -> total 3000ms > 2500ms
    assert decision is None


def test_zero_attempts_never_reconnects() -> None:
    assert next_attempt(_policy(max_attempts=0), reset_attempt()) is None


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        _policy(interval_ms=-1)
    with pytest.raises(ValueError):
        _policy(interval_ms=10, max_delay_ms=5)

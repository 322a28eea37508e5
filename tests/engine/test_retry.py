from __future__ import annotations

import asyncio

import pytest

from harvester.config import ScrapingConfig
from harvester.engine import RetryExhaustedError, RetryPolicy, with_retry


def test_always_failing_operation_runs_three_times_with_backoff(sleep_recorder) -> None:
    calls = 0

    async def operation() -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError(f"attempt {calls}")

    with pytest.raises(RetryExhaustedError) as info:
        asyncio.run(with_retry(operation, label="listing page", max_attempts=3, sleep=sleep_recorder))

    assert calls == 3
    assert sleep_recorder.delays == [1.0, 2.0]
    assert str(info.value) == "attempt 3; listing page failed after 3 attempts"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert info.value.last_error is info.value.__cause__
    assert not hasattr(info.value.last_error, "__notes__")


def test_reraising_a_shared_error_leaves_it_untouched(sleep_recorder) -> None:
    shared = ConnectionError("listing offline")

    async def operation() -> None:
        raise shared

    for page in (1, 2):
        with pytest.raises(RetryExhaustedError) as info:
            asyncio.run(with_retry(operation, label=f"page {page}", sleep=sleep_recorder))
        assert str(info.value) == f"listing offline; page {page} failed after 3 attempts"

    assert str(shared) == "listing offline"
    assert getattr(shared, "__notes__", []) == []


def test_operation_recovering_returns_value(sleep_recorder) -> None:
    outcomes = [RuntimeError("flaky"), "ok"]

    async def operation() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert asyncio.run(with_retry(operation, sleep=sleep_recorder)) == "ok"
    assert sleep_recorder.delays == [1.0]


def test_errors_outside_retry_on_propagate_immediately(sleep_recorder) -> None:
    calls = 0

    async def operation() -> None:
        nonlocal calls
        calls += 1
        raise ValueError("malformed url")

    policy = RetryPolicy(retry_on=(ConnectionError,))
    with pytest.raises(ValueError):
        asyncio.run(with_retry(operation, policy=policy, sleep=sleep_recorder))
    assert calls == 1
    assert sleep_recorder.delays == []


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (5, 10.0), (9, 10.0)],
)
def test_backoff_is_exponential_and_capped(attempt: int, expected: float) -> None:
    assert RetryPolicy(base_delay=1.0, max_delay=10.0).delay_for(attempt) == expected


def test_policy_from_config_and_validation() -> None:
    policy = RetryPolicy.from_config(ScrapingConfig(retry_attempts=5, retry_base_delay=0.5, retry_max_delay=4.0))
    assert (policy.max_attempts, policy.base_delay, policy.max_delay) == (5, 0.5, 4.0)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)

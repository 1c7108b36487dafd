"""Unit tests for RetryPolicy."""

import pytest

from cim_extract.core.config import RetrySettings
from cim_extract.resilience.retry import RetryConfig, RetryPolicy


class Flaky:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return "done"


def make_policy(max_retries=3, base_delay=2.0, max_delay=30.0, factor=2.0):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    policy = RetryPolicy(
        RetryConfig(base_delay=base_delay, max_delay=max_delay, max_retries=max_retries, factor=factor),
        sleep=fake_sleep,
    )
    return policy, sleeps


@pytest.mark.asyncio
async def test_success_after_some_failures_stops_early():
    policy, sleeps = make_policy(max_retries=3)
    operation = Flaky(failures=2)

    assert await policy.execute(operation, context="vision") == "done"
    assert operation.calls == 3
    assert sleeps == [2.0, 4.0]


@pytest.mark.asyncio
async def test_exhaustion_propagates_last_error():
    policy, sleeps = make_policy(max_retries=2)
    operation = Flaky(failures=10)

    with pytest.raises(RuntimeError, match="failure 3") as exc_info:
        await policy.execute(operation, context="vision-retry")

    assert operation.calls == 3
    assert len(sleeps) == 2
    assert exc_info.value.retry_attempts == 3
    assert exc_info.value.retry_context == "vision-retry"


@pytest.mark.asyncio
async def test_first_try_success_never_sleeps():
    policy, sleeps = make_policy()
    assert await policy.execute(Flaky(failures=0)) == "done"
    assert sleeps == []


def test_delay_is_capped():
    policy, _ = make_policy(base_delay=2.0, max_delay=10.0, factor=3.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [2.0, 6.0, 10.0, 10.0]


def test_from_settings():
    policy = RetryPolicy.from_settings(RetrySettings())
    assert policy.config.max_retries == 2
    assert policy.config.base_delay == 2.0
    assert policy.delay_for(2) == 4.0

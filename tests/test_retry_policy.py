import pytest
from core.errors import (
    AuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
)
from core.retry import RetryPolicy


def _policy(sleeps, **kwargs):
    async def fake_sleep(delay):
        sleeps.append(delay)

    kwargs.setdefault("jitter", 0.0)
    return RetryPolicy(sleep=fake_sleep, **kwargs)


@pytest.mark.asyncio
async def test_retries_until_success():
    sleeps = []
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ProviderUnavailableError("down")
        return "ok"

    policy = _policy(sleeps, max_attempts=5, base_delay=1.0, unavailable_floor=(0.0, 0.0))
    assert await policy.run(flaky) == "ok"
    assert len(attempts) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_error_raises_immediately():
    sleeps = []
    calls = []

    async def denied():
        calls.append(1)
        raise AuthenticationError("bad key", status_code=401)

    with pytest.raises(AuthenticationError):
        await _policy(sleeps).run(denied)
    assert calls == [1]
    assert sleeps == []


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    sleeps = []
    calls = []

    async def always_down():
        calls.append(1)
        raise ProviderError("flaky")

    with pytest.raises(ProviderError):
        await _policy(sleeps, max_attempts=3, base_delay=0.5).run(always_down)
    assert len(calls) == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_plain_exceptions_are_not_retried():
    async def broken():
        raise KeyError("x")

    with pytest.raises(KeyError):
        await _policy([]).run(broken)


def test_delay_grows_and_is_capped():
    policy = RetryPolicy(base_delay=2.0, jitter=0.0, max_delay=10.0)
    assert [policy.delay_for(n) for n in range(4)] == [2.0, 4.0, 8.0, 10.0]


def test_rate_limit_floor_applies():
    policy = RetryPolicy(base_delay=1.0, jitter=0.0, rate_limit_floor=(10.0, 5.0))
    assert policy.delay_for(0, RateLimitError("slow down")) == 10.0
    assert policy.delay_for(1, RateLimitError("slow down")) == 15.0


def test_jitter_stays_within_bound():
    policy = RetryPolicy(base_delay=1.0, jitter=0.5)
    assert 1.0 <= policy.delay_for(0) <= 1.5

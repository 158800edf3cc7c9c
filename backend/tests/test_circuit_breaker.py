import pytest

from app.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    breaker_snapshot,
    get_breaker,
    reset_all_breakers,
)
from app.utils.exceptions import CircuitOpenError


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def _fail():
    raise RuntimeError("boom")


async def _ok():
    return "ok"


def make_breaker(clock, **options):
    options.setdefault("failure_threshold", 3)
    options.setdefault("reset_timeout", 10.0)
    options.setdefault("success_threshold", 2)
    return CircuitBreaker("test", clock=clock, **options)


async def test_opens_after_consecutive_failures_and_rejects_without_calling():
    clock = Clock()
    breaker = make_breaker(clock)

    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
    assert breaker.state == CircuitBreakerState.OPEN

    calls = []

    async def tracked():
        calls.append(1)
        return "ok"

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.call(tracked)
    assert calls == []
    assert str(exc_info.value) == "Service unavailable (circuit breaker test is OPEN)"


async def test_success_in_closed_state_resets_failure_count():
    breaker = make_breaker(Clock())
    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
    await breaker.call(_ok)
    assert breaker.failure_count == 0

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
    assert breaker.state == CircuitBreakerState.CLOSED


async def test_half_open_recovers_after_enough_successes():
    clock = Clock()
    breaker = make_breaker(clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

    clock.now += 10.0
    assert breaker.state == CircuitBreakerState.HALF_OPEN

    await breaker.call(_ok)
    assert breaker.state == CircuitBreakerState.HALF_OPEN
    await breaker.call(_ok)
    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.failure_count == 0


async def test_half_open_failure_reopens():
    clock = Clock()
    breaker = make_breaker(clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

    clock.now += 11.0
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.state == CircuitBreakerState.OPEN

    clock.now += 5.0
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)


async def test_registry_shares_one_breaker_per_name():
    first = get_breaker("registry-test", failure_threshold=1)
    assert get_breaker("registry-test") is first

    with pytest.raises(RuntimeError):
        await first.call(_fail)
    assert breaker_snapshot()["registry-test"]["state"] == "OPEN"

    reset_all_breakers()
    assert first.state == CircuitBreakerState.CLOSED

import httpx
import pytest

from app.utils.exceptions import TransientProviderError, ValidationError
from app.utils.retry import calculate_delay, default_should_retry, with_retry


class Flaky:
    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


async def test_succeeds_after_transient_failures():
    operation = Flaky(2, TransientProviderError("HTTP error: 503 Service Unavailable"))
    assert await with_retry(operation, max_retries=3, base_delay=0.001) == "ok"
    assert operation.calls == 3


async def test_gives_up_after_max_retries_plus_one_attempts():
    error = TransientProviderError("HTTP error: 500 Internal Server Error")
    operation = Flaky(10, error)
    with pytest.raises(TransientProviderError) as exc_info:
        await with_retry(operation, max_retries=2, base_delay=0.001)
    assert exc_info.value is error
    assert operation.calls == 3


async def test_client_errors_are_not_retried():
    operation = Flaky(5, TransientProviderError("HTTP error: 404 Not Found"))
    with pytest.raises(TransientProviderError):
        await with_retry(operation, max_retries=3, base_delay=0.001)
    assert operation.calls == 1


async def test_custom_predicate_overrides_default():
    operation = Flaky(1, ValidationError("bad input"))
    result = await with_retry(operation, max_retries=1, base_delay=0.001, should_retry=lambda e: True)
    assert result == "ok"


@pytest.mark.parametrize("error,expected", [
    (httpx.ConnectError("connection refused"), True),
    (httpx.ReadTimeout("timed out"), True),
    (TransientProviderError("HTTP error: 502 Bad Gateway"), True),
    (TransientProviderError("HTTP error: 429 Too Many Requests"), False),
    (RuntimeError("Request timeout after 60s"), True),
    (RuntimeError("getaddrinfo ENOTFOUND example.invalid"), True),
    (ValueError("unexpected token"), False),
])
def test_default_predicate(error, expected):
    assert default_should_retry(error) is expected


def test_delay_grows_exponentially_with_bounded_jitter():
    for attempt in range(4):
        base = 0.2 * (2 ** attempt)
        for _ in range(20):
            delay = calculate_delay(attempt, 0.2)
            assert base <= delay <= 2 * base

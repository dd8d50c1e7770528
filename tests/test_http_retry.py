from __future__ import annotations

import httpx
import pytest

from facturador.services.exceptions import RetryableApiError
from facturador.services.http_retry import (
    API_READ,
    API_WRITE,
    AUTH,
    RetryPolicy,
    _calc_delay,
    retry_call,
)
from tests.conftest import no_sleep


def _flaky(exc: Exception, failures: int, result: str = "ok"):
    calls: list[int] = []

    async def func():
        calls.append(1)
        if len(calls) <= failures:
            raise exc
        return result

    return func, calls


class TestRetryCall:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        async def func():
            return 42

        assert await retry_call(func, API_WRITE, sleep_func=no_sleep) == 42

    @pytest.mark.asyncio
    async def test_retries_connect_error_then_succeeds(self):
        func, calls = _flaky(httpx.ConnectError("reset"), failures=1)
        assert await retry_call(func, API_WRITE, sleep_func=no_sleep) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_exhausts_retries_and_reraises(self):
        func, calls = _flaky(httpx.ConnectError("down"), failures=10)
        with pytest.raises(httpx.ConnectError, match="down"):
            await retry_call(func, API_WRITE, sleep_func=no_sleep)
        assert len(calls) == API_WRITE.max_attempts

    @pytest.mark.asyncio
    async def test_does_not_retry_non_retryable(self):
        func, calls = _flaky(RuntimeError("fatal"), failures=10)
        with pytest.raises(RuntimeError, match="fatal"):
            await retry_call(func, API_WRITE, sleep_func=no_sleep)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_backoff_delays_increase(self):
        delays: list[float] = []

        async def record(delay: float) -> None:
            delays.append(delay)

        policy = RetryPolicy(
            max_attempts=3,
            base_delay=1.0,
            max_delay=10.0,
            backoff_factor=2.0,
            jitter=0.0,
            retryable_exceptions=(httpx.ConnectError,),
        )
        func, _ = _flaky(httpx.ConnectError("err"), failures=2)
        assert await retry_call(func, policy, sleep_func=record) == "ok"
        assert delays == [pytest.approx(1.0), pytest.approx(2.0)]


class TestWritePolicy:
    @pytest.mark.asyncio
    async def test_does_not_retry_read_timeout(self):
        func, calls = _flaky(httpx.ReadTimeout("read timed out"), failures=10)
        with pytest.raises(httpx.ReadTimeout):
            await retry_call(func, API_WRITE, sleep_func=no_sleep)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_does_not_retry_retryable_status(self):
        func, calls = _flaky(RetryableApiError("busy", status_code=503), failures=10)
        with pytest.raises(RetryableApiError):
            await retry_call(func, API_WRITE, sleep_func=no_sleep)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_retries_connect_timeout(self):
        func, calls = _flaky(httpx.ConnectTimeout("connect timed out"), failures=1)
        assert await retry_call(func, API_WRITE, sleep_func=no_sleep) == "ok"
        assert len(calls) == 2


class TestReadPolicy:
    @pytest.mark.asyncio
    async def test_retries_read_timeout(self):
        func, _ = _flaky(httpx.ReadTimeout("read timed out"), failures=1)
        assert await retry_call(func, API_READ, sleep_func=no_sleep) == "ok"

    @pytest.mark.asyncio
    async def test_retries_retryable_api_error(self):
        func, calls = _flaky(RetryableApiError("502", status_code=502), failures=2)
        assert await retry_call(func, API_READ, sleep_func=no_sleep) == "ok"
        assert len(calls) == 3

    def test_retryable_status_codes(self):
        assert API_READ.retryable_status_codes == frozenset({429, 502, 503, 504})

    def test_max_attempts(self):
        assert API_READ.max_attempts == 4
        assert AUTH.max_attempts == 2


class TestCalcDelay:
    def test_exponential_growth(self):
        policy = RetryPolicy(
            max_attempts=5,
            base_delay=1.0,
            max_delay=100.0,
            backoff_factor=2.0,
            jitter=0.0,
            retryable_exceptions=(),
        )
        assert _calc_delay(0, policy) == pytest.approx(1.0)
        assert _calc_delay(2, policy) == pytest.approx(4.0)

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(
            max_attempts=5,
            base_delay=10.0,
            max_delay=15.0,
            backoff_factor=2.0,
            jitter=0.0,
            retryable_exceptions=(),
        )
        assert _calc_delay(3, policy) == pytest.approx(15.0)

    def test_jitter_within_bounds(self):
        policy = RetryPolicy(
            max_attempts=5,
            base_delay=4.0,
            max_delay=100.0,
            backoff_factor=1.0,
            jitter=0.25,
            retryable_exceptions=(),
        )
        for _ in range(100):
            assert 3.0 <= _calc_delay(0, policy) <= 5.0

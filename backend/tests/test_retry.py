"""
Tests for retry with exponential backoff and HTTP retries.
"""

import asyncio
import json

import httpx
import pytest

from menu_scrapers.errors import CDPConnectionError, EvaluationError, RetryableHTTPError
from menu_scrapers.utils.retry import (
    RetryOptions,
    calculate_delay,
    fetch_with_retry,
    is_retryable,
    with_retry,
)


def flaky(failures, error_factory, value='ok'):
    """Coroutine function failing ``failures`` times, then returning value."""
    calls = {'count': 0}

    async def fn():
        calls['count'] += 1
        if calls['count'] <= failures:
            raise error_factory()
        return value

    return fn, calls


class TestWithRetry:
    """Test the with_retry() loop."""

    def test_succeeds_after_three_failures(self, sleeps):
        """Test 3 failures then success -> 4 calls, exponential delays."""
        fn, calls = flaky(3, lambda: ConnectionError("ECONNRESET"))

        result = asyncio.run(with_retry(fn, max_retries=3, base_delay=1, backoff_multiplier=2))

        assert result == 'ok'
        assert calls['count'] == 4
        assert len(sleeps) == 3
        for n, delay in enumerate(sleeps, start=1):
            expected = 2 ** (n - 1)
            assert expected <= delay <= expected * 1.3

    def test_exhausted_retries_raise_last_error(self, sleeps):
        """Test that the last error propagates after max_retries + 1 calls."""
        fn, calls = flaky(10, lambda: CDPConnectionError("socket hang up"))

        with pytest.raises(CDPConnectionError):
            asyncio.run(with_retry(fn, max_retries=2, base_delay=0.5))
        assert calls['count'] == 3

    def test_non_retryable_error_raises_immediately(self, sleeps):
        """Test that errors outside the retryable set are not retried."""
        fn, calls = flaky(1, lambda: EvaluationError("TypeError: x is undefined"))

        with pytest.raises(EvaluationError):
            asyncio.run(with_retry(fn, max_retries=3))
        assert calls['count'] == 1
        assert sleeps == []

    def test_on_retry_callback(self, sleeps):
        """Test that on_retry gets attempt number, error and delay."""
        seen = []
        fn, _ = flaky(2, lambda: RuntimeError("fetch failed"))

        asyncio.run(with_retry(fn, RetryOptions(base_delay=0.1), on_retry=lambda n, e, d: seen.append((n, str(e)))))

        assert seen == [(1, 'fetch failed'), (2, 'fetch failed')]

    def test_delay_capped_at_max_delay(self):
        """Test that large attempts are capped."""
        options = RetryOptions(base_delay=10, max_delay=15, backoff_multiplier=3)
        assert calculate_delay(5, options) == 15


class TestIsRetryable:
    """Test error classification."""

    @pytest.mark.parametrize("message", [
        "connect ETIMEDOUT 1.2.3.4:443",
        "read ECONNRESET",
        "fetch failed",
        "Request timeout after 30s",
        "HTTP 503: Service Unavailable",
        "HTTP 429: Too Many Requests",
    ])
    def test_retryable_messages(self, message):
        """Test substring matching on the message."""
        assert is_retryable(RuntimeError(message), RetryOptions(retryable_exceptions=()))

    def test_non_retryable_message(self):
        assert not is_retryable(RuntimeError("Invalid project id"), RetryOptions(retryable_exceptions=()))

    def test_transport_errors_by_type(self):
        """Test that transport exceptions are retryable whatever their message."""
        assert is_retryable(CDPConnectionError("boom"), RetryOptions())
        assert is_retryable(httpx.ConnectError("boom"), RetryOptions())

    def test_server_error_responses_by_type(self):
        """Test that any 5xx raised by fetch_with_retry is retryable."""
        assert is_retryable(RetryableHTTPError(500, 'Internal error'), RetryOptions())


class TestFetchWithRetry:
    """Test HTTP retries."""

    def test_retries_5xx_then_succeeds(self, sleeps):
        """Test that a 502 is retried and the 200 returned."""
        statuses = iter([502, 200])
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(next(statuses), json={'ok': True})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                return await fetch_with_retry('https://ingest.test/scraped-batch', json={'a': 1}, client=http)

        response = asyncio.run(run())
        assert response.status_code == 200
        assert len(requests) == 2
        assert json.loads(requests[0].content) == {'a': 1}

    def test_4xx_is_returned_not_retried(self, sleeps):
        """Test that client errors come back to the caller."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(400, text='bad batch')

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                return await fetch_with_retry('https://ingest.test/scraped-batch', client=http)

        response = asyncio.run(run())
        assert response.status_code == 400
        assert len(requests) == 1
        assert sleeps == []

    def test_persistent_5xx_raises(self, sleeps):
        """Test that exhausted retries raise RetryableHTTPError."""
        def handler(request):
            return httpx.Response(503, text='down')

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                return await fetch_with_retry('https://ingest.test/x', client=http, max_retries=2)

        with pytest.raises(RetryableHTTPError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.status == 503
        assert len(sleeps) == 2

"""
Retry utilities with exponential backoff and jitter.

Used for BrowserBase session acquisition, menu navigation and every HTTP
call to the ingestion / notification collaborators.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, Type, TypeVar

import httpx

from ..errors import RetryableHTTPError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_RETRYABLE_ERRORS: Tuple[str, ...] = (
    'ETIMEDOUT',
    'ECONNRESET',
    'ECONNREFUSED',
    'fetch failed',
    'timeout',
)

# HTTP status codes that are always worth another attempt
RETRYABLE_STATUS_MARKERS: Tuple[str, ...] = ('429', '502', '503')

DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    TransportError,
    RetryableHTTPError,
    httpx.TransportError,
    asyncio.TimeoutError,
)


@dataclass
class RetryOptions:
    """Configuration for with_retry(). Delays are in seconds."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_errors: Sequence[str] = DEFAULT_RETRYABLE_ERRORS
    retryable_exceptions: Tuple[Type[BaseException], ...] = DEFAULT_RETRYABLE_EXCEPTIONS
    on_retry: Optional[Callable[[int, BaseException, float], None]] = field(default=None, repr=False)


async def sleep(seconds: float) -> None:
    """Sleep helper; patched out in tests."""
    if seconds > 0:
        await asyncio.sleep(seconds)


def calculate_delay(attempt: int, options: RetryOptions) -> float:
    """
    Delay before the attempt following failed attempt ``attempt``.

    base * multiplier^(attempt-1) plus 0-30% jitter, capped at max_delay.
    """
    exponential = options.base_delay * (options.backoff_multiplier ** (attempt - 1))
    jitter = random.uniform(0, 0.3) * exponential
    return min(exponential + jitter, options.max_delay)


def is_retryable(error: BaseException, options: RetryOptions) -> bool:
    """Check whether an error should be retried."""
    if options.retryable_exceptions and isinstance(error, options.retryable_exceptions):
        return True

    message = str(error).lower()
    if any(code in message for code in RETRYABLE_STATUS_MARKERS):
        return True

    return any(pattern.lower() in message for pattern in options.retryable_errors)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    **overrides: Any
) -> T:
    """
    Call ``fn`` until it succeeds, at most ``max_retries + 1`` times.

    Non-retryable errors are re-raised on first occurrence. The last error is
    re-raised once attempts are exhausted.

    Args:
        fn: Zero-argument coroutine function
        options: Retry configuration (defaults to RetryOptions())
        **overrides: Field overrides applied on top of ``options``

    Returns:
        Whatever ``fn`` returns
    """
    opts = options or RetryOptions()
    if overrides:
        opts = replace(opts, **overrides)

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            is_last_attempt = attempt > opts.max_retries
            if is_last_attempt or not is_retryable(e, opts):
                raise

            delay = calculate_delay(attempt, opts)
            if opts.on_retry:
                opts.on_retry(attempt, e, delay)
            else:
                logger.debug(f"Retry {attempt}/{opts.max_retries} after {delay:.2f}s: {e}")

            await sleep(delay)
            attempt += 1


async def fetch_with_retry(
    url: str,
    method: str = 'POST',
    json: Any = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    options: Optional[RetryOptions] = None,
    client: Optional[httpx.AsyncClient] = None,
    **overrides: Any
) -> httpx.Response:
    """
    Perform an HTTP request with a hard timeout and retries.

    5xx and 429 responses are raised as RetryableHTTPError inside the retry
    loop. Any other response (including 4xx) is returned to the caller.

    Args:
        url: Target URL
        method: HTTP method
        json: JSON body
        headers: Extra request headers
        timeout: Total time budget per attempt, in seconds
        options: Retry configuration
        client: Shared httpx client (a short-lived one is created if omitted)

    Returns:
        The final httpx.Response
    """
    async def attempt(http: httpx.AsyncClient) -> httpx.Response:
        try:
            response = await asyncio.wait_for(
                http.request(method, url, json=json, headers=headers),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise asyncio.TimeoutError(f"Request to {url} timeout after {timeout}s")

        if response.status_code >= 500 or response.status_code == 429:
            raise RetryableHTTPError(response.status_code, response.text)

        return response

    if client is not None:
        return await with_retry(lambda: attempt(client), options, **overrides)

    async with httpx.AsyncClient(timeout=timeout) as http:
        return await with_retry(lambda: attempt(http), options, **overrides)

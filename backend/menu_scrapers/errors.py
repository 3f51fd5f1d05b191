"""
Error taxonomy for the scraper.

Transport errors are retried at the session-acquisition layer, protocol and
navigation errors at the location-attempt layer. Extraction errors never
leave the per-item loop.
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for all scraper errors."""


# ============================================================
# TRANSPORT (WebSocket level)
# ============================================================

class TransportError(ScraperError):
    """The CDP WebSocket failed or is not usable."""


class CDPConnectionError(TransportError, ConnectionError):
    """The WebSocket could not be opened within the connect timeout."""


class ConnectionClosedError(TransportError):
    """The WebSocket closed while commands were still pending."""

    def __init__(self, code: Optional[int] = None, reason: Optional[str] = None):
        self.code = code
        self.reason = reason or ''
        super().__init__(f"WebSocket closed ({code}): {self.reason}")


class CommandTimeoutError(TransportError):
    """No response arrived for a CDP command within its timeout."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"CDP command timeout: {method} (after {timeout}s)")


# ============================================================
# PROTOCOL / PAGE
# ============================================================

class ProtocolError(ScraperError):
    """A CDP response carried an ``error`` field."""

    def __init__(self, code: Optional[int], message: str, data: Optional[str] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"CDP Error {code}: {message}")


class NavigationError(ScraperError):
    """Page.navigate reported an error or the load event never fired."""


class EvaluationError(ScraperError):
    """Script evaluated in the page threw an exception."""


class SelectorTimeoutError(ScraperError):
    """A selector did not appear before the polling timeout."""


class SessionError(ScraperError):
    """Browser session could not be created or was used before init()."""


class ExtractionError(ScraperError):
    """A product card or detail page could not be parsed."""


# ============================================================
# DOWNSTREAM / RESILIENCE
# ============================================================

class DownstreamError(ScraperError):
    """Ingestion or notification endpoint rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RetryableHTTPError(DownstreamError):
    """5xx or 429 response, routed through the retry loop."""

    def __init__(self, status: int, body: str = ''):
        self.body = body
        super().__init__(f"HTTP {status}: {body[:200]}", status=status)


class CircuitOpenError(ScraperError):
    """The circuit for a dependency is open; the call was not attempted."""

    def __init__(self, key: str, retry_after: float):
        self.key = key
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker open for {key}. Will retry after {round(retry_after)}s"
        )

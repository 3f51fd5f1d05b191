"""Shared utilities for the scraper."""

from .normalizers import (
    clean_text,
    parse_price,
    all_prices,
    parse_int,
    slugify,
    normalize_potency,
)
from .retry import RetryOptions, with_retry, fetch_with_retry
from .circuit_breaker import CircuitBreakerOptions, CircuitBreakerRegistry, CircuitState, default_registry

__all__ = [
    'clean_text',
    'parse_price',
    'all_prices',
    'parse_int',
    'slugify',
    'normalize_potency',
    'RetryOptions',
    'with_retry',
    'fetch_with_retry',
    'CircuitBreakerOptions',
    'CircuitBreakerRegistry',
    'CircuitState',
    'default_registry',
]

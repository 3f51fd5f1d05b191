"""
Data normalization utilities for scraped menu data.

These functions turn rendered text into prices, counts and slugs.
"""

import re
from typing import List, Optional

PRICE_RE = re.compile(r'\$(\d+(?:\.\d{1,2})?)')
LOOSE_PRICE_RE = re.compile(r'\$?(\d+(?:\.\d{1,2})?)')


def clean_text(text: Optional[str]) -> str:
    """
    Collapse whitespace.

    Examples:
        '  Blue   Dream\\n 3.5g ' -> 'Blue Dream 3.5g'
    """
    if not text:
        return ''
    return re.sub(r'\s+', ' ', text).strip()


def parse_price(text: Optional[str]) -> Optional[float]:
    """
    First dollar amount in text.

    Examples:
        '$40.00' -> 40.0
        'Now $35 (was $45)' -> 35.0
        '40' -> None
    """
    if not text:
        return None
    match = PRICE_RE.search(text)
    if match:
        return float(match.group(1))
    return None


def parse_loose_price(text: Optional[str]) -> Optional[float]:
    """Like parse_price(), but the dollar sign is optional."""
    if not text:
        return None
    match = LOOSE_PRICE_RE.search(text)
    if match:
        return float(match.group(1))
    return None


def all_prices(text: Optional[str]) -> List[float]:
    """Every positive dollar amount in text, in order."""
    if not text:
        return []
    return [p for p in (float(m) for m in PRICE_RE.findall(text)) if p > 0]


def parse_int(value) -> Optional[int]:
    """
    Leading integer of a value, or None.

    Examples:
        '12' -> 12
        ' 7 ' -> 7
        'abc' -> None
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = re.match(r'\s*(-?\d+)', str(value))
    if match:
        return int(match.group(1))
    return None


def slugify(text: str) -> str:
    """
    Lowercase, non-alphanumerics to dashes (matches menu product URLs).

    Examples:
        'Blue Dream 3.5g' -> 'blue-dream-3-5g'
    """
    return re.sub(r'[^a-z0-9]', '-', (text or '').lower())


def normalize_potency(text: Optional[str]) -> Optional[str]:
    """
    Tidy a potency label.

    Examples:
        'THC:  22.5 %' -> 'THC: 22.5%'
        '' -> None
    """
    text = clean_text(text)
    if not text:
        return None
    return re.sub(r'(\d)\s+%', r'\1%', text)

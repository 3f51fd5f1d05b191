"""
Inventory heuristics.

Ordered fallback chain, cheapest and most reliable first:

    1. Out-of-stock badge / text          -> exact      (quantity 0)
    2. Page-text patterns ("3 left")      -> exact
    3. Quantity selector max (< 50)       -> estimated
    4. Cart-hack (limit message / clamp)  -> exact or estimated
    5. Boolean fallback                   -> boolean    (quantity unknown)

Steps 1-3 work on a rendered HTML snapshot, step 4 drives the live page.
apply_inventory() only lets a result overwrite a product's recorded value
when its confidence is at least as high.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

from bs4 import BeautifulSoup, Tag

from ..base import Confidence, InventoryResult, InventorySource, ScrapedProduct
from ..config import (
    LOW_STOCK_SELECTOR,
    OUT_OF_STOCK_SELECTORS,
    QUANTITY_INPUT_SELECTOR,
    QUANTITY_SELECT_SELECTOR,
)
from .normalizers import clean_text, parse_int
from .scripts import (
    CART_CONTROLS,
    CART_FEEDBACK,
    CLICK_ADD_TO_CART,
    CLICK_INCREMENT,
    PAGE_SNAPSHOT,
    PROBE_ATTR,
    SET_QUANTITY,
)

logger = logging.getLogger(__name__)

# Dropdown maxima at or above this are store-wide caps, not inventory
DROPDOWN_CEILING = 50

CART_HACK_SENTINEL = 999
MAX_INCREMENT_CLICKS = 50


# ============================================================
# PATTERNS
# ============================================================

OUT_OF_STOCK_PATTERNS: List[Pattern] = [
    re.compile(r'out\s*of\s*stock', re.I),
    re.compile(r'sold\s*out', re.I),
    re.compile(r'(?<![a-z])unavailable', re.I),
    re.compile(r'not\s*available', re.I),
]

# Product card text, first match wins
CARD_STOCK_PATTERNS: List[Pattern] = [
    re.compile(r'only\s*(\d+)\s*left', re.I),
    re.compile(r'(\d+)\s*left(?:\s*in\s*stock)?', re.I),
    re.compile(r'(\d+)\s*remaining', re.I),
    re.compile(r'limited[:\s]*(\d+)', re.I),
    re.compile(r'low\s*stock[:\s]*(\d+)', re.I),
    re.compile(r'(\d+)\s*available', re.I),
    re.compile(r'hurry[,!]?\s*only\s*(\d+)', re.I),
]

# Detail page text, first match wins
PAGE_STOCK_PATTERNS: List[Pattern] = [
    re.compile(r'(\d+)\s*left\s*in\s*stock', re.I),
    re.compile(r'only\s*(\d+)\s*left', re.I),
    re.compile(r'(\d+)\s*left', re.I),
    re.compile(r'(\d+)\s*remaining', re.I),
    re.compile(r'(\d+)\s*available', re.I),
    re.compile(r'(\d+)\s*in\s*stock', re.I),
    re.compile(r'hurry[,!]?\s*only\s*(\d+)', re.I),
    re.compile(r'limited[:\s]*(\d+)', re.I),
    re.compile(r'low\s*stock[:\s]*(\d+)', re.I),
]

CART_LIMIT_PATTERNS: List[Pattern] = [
    re.compile(r'max(?:imum)?\s*(?:quantity\s*)?(?:is|of|:)?\s*(\d+)', re.I),
    re.compile(r'limit(?:ed)?\s*(?:to|of|:)?\s*(\d+)', re.I),
    re.compile(r'only\s*(\d+)\s*(?:available|remaining|left)', re.I),
    re.compile(r'cannot\s*add\s*more\s*than\s*(\d+)', re.I),
    re.compile(r'exceeds?\s*(?:the\s*)?available\s*(?:quantity|inventory|stock)?\s*(?:of\s*)?(\d+)', re.I),
    re.compile(r'(?:adjusted|changed|reduced)\s*to\s*(\d+)', re.I),
    re.compile(r'(\d+)\s*(?:items?\s*)?(?:maximum|max|limit)', re.I),
]


# ============================================================
# RESULT CONSTRUCTORS
# ============================================================

def out_of_stock(warning: Optional[str] = None) -> InventoryResult:
    return InventoryResult(
        quantity=0,
        quantity_warning=warning or 'Out of stock',
        in_stock=False,
        source=InventorySource.OUT_OF_STOCK_BADGE,
        confidence=Confidence.EXACT,
    )


def _text_result(quantity: int, warning: str) -> InventoryResult:
    return InventoryResult(
        quantity=quantity,
        quantity_warning=warning,
        in_stock=quantity > 0,
        source=InventorySource.PAGE_TEXT,
        confidence=Confidence.EXACT,
    )


def _dropdown_result(quantity: int) -> InventoryResult:
    return InventoryResult(
        quantity=quantity,
        quantity_warning=f"Max qty: {quantity}",
        in_stock=True,
        source=InventorySource.QUANTITY_DROPDOWN,
        confidence=Confidence.ESTIMATED,
    )


# ============================================================
# SNAPSHOT HEURISTICS (steps 1-3)
# ============================================================

def _as_soup(html_or_node: Union[str, Tag]) -> Tag:
    if isinstance(html_or_node, Tag):
        return html_or_node
    return BeautifulSoup(html_or_node or '', 'html.parser')


def find_out_of_stock_badge(node: Tag) -> Optional[Tag]:
    """First element matching an out-of-stock badge selector."""
    return node.select_one(', '.join(OUT_OF_STOCK_SELECTORS))


def check_out_of_stock(node: Tag, text: Optional[str] = None) -> Optional[InventoryResult]:
    """Step 1: badge element, or (when text is given) out-of-stock wording."""
    badge = find_out_of_stock_badge(node)
    if badge is not None:
        return out_of_stock(clean_text(badge.get_text(' ')) or None)

    if text is not None:
        for pattern in OUT_OF_STOCK_PATTERNS:
            if pattern.search(text):
                return out_of_stock()
    return None


def match_stock_text(text: str, patterns: List[Pattern] = PAGE_STOCK_PATTERNS) -> Optional[InventoryResult]:
    """
    Step 2: first stock pattern found in text.

    Examples:
        'Only 3 left in stock' -> quantity 3, exact, page-text
    """
    if not text:
        return None
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return _text_result(int(match.group(1)), clean_text(match.group(0)))
    return None


def _select_max(select: Tag) -> Optional[int]:
    values = [parse_int(opt.get('value', opt.get_text())) for opt in select.find_all('option')]
    values = [v for v in values if v is not None and v > 0]
    return max(values) if values else None


def check_quantity_selector(node: Tag) -> Optional[InventoryResult]:
    """
    Step 3: max of a quantity <select>, or a numeric input's max attribute.

    Only maxima below DROPDOWN_CEILING count as inventory signals.
    """
    select = node.select_one(QUANTITY_SELECT_SELECTOR)

    candidates = []
    if select is not None:
        candidates.append(_select_max(select))

    qty_input = node.select_one(QUANTITY_INPUT_SELECTOR)
    if qty_input is not None and qty_input.get('max'):
        candidates.append(parse_int(qty_input.get('max')))

    for value in candidates:
        if value is not None and 0 < value < DROPDOWN_CEILING:
            return _dropdown_result(value)
    return None


def inventory_from_card(card: Tag) -> InventoryResult:
    """
    Inventory signal from a listing-page product card.

    An out-of-stock badge wins outright; otherwise card text patterns, a
    low-stock element carrying a number, then a quantity dropdown.
    """
    badge = find_out_of_stock_badge(card)
    if badge is not None:
        return out_of_stock(clean_text(badge.get_text(' ')) or None)

    text = card.get_text(' ', strip=True)
    result = match_stock_text(text, CARD_STOCK_PATTERNS)
    if result:
        return result

    low_stock = card.select_one(LOW_STOCK_SELECTOR)
    if low_stock is not None:
        warning = clean_text(low_stock.get_text(' '))
        number = re.search(r'(\d+)', warning)
        if number:
            return _text_result(int(number.group(1)), warning)

    result = check_quantity_selector(card)
    if result:
        return result

    return InventoryResult.unknown()


def detect_inventory(html: Union[str, Tag], text: Optional[str] = None) -> Optional[InventoryResult]:
    """
    Steps 1-3 against a detail-page snapshot.

    Args:
        html: Rendered page HTML (or parsed tree)
        text: Visible page text; derived from the HTML when omitted

    Returns:
        The first heuristic result, or None if nothing was found
    """
    soup = _as_soup(html)
    if text is None:
        text = soup.get_text(' ', strip=True)

    return (
        check_out_of_stock(soup, text)
        or match_stock_text(text)
        or check_quantity_selector(soup)
    )


# ============================================================
# CART-HACK (step 4)
# ============================================================

def parse_cart_limit(messages: List[str], sentinel: int = CART_HACK_SENTINEL) -> Optional[Tuple[int, str]]:
    """
    Find a quantity limit in validation messages.

    Values at or above the sentinel are the probe echoing back and ignored.
    """
    for message in messages:
        if not message:
            continue
        for pattern in CART_LIMIT_PATTERNS:
            for match in pattern.finditer(message):
                value = int(match.group(1))
                if 0 <= value < sentinel:
                    return value, clean_text(match.group(0))
    return None


def interpret_cart_feedback(feedback: Dict[str, Any], sentinel: int = CART_HACK_SENTINEL,
                            check_input: bool = True) -> Optional[InventoryResult]:
    """Turn CART_FEEDBACK output into a result, or None."""
    feedback = feedback or {}
    messages = list(feedback.get('messages') or [])
    messages.append(feedback.get('text') or '')

    limit = parse_cart_limit(messages, sentinel)
    if limit is not None:
        quantity, warning = limit
        return InventoryResult(
            quantity=quantity,
            quantity_warning=warning,
            in_stock=quantity > 0,
            source=InventorySource.CART_HACK,
            confidence=Confidence.EXACT,
        )

    if check_input:
        corrected = parse_int(feedback.get('inputValue'))
        if corrected is not None and 0 < corrected < sentinel:
            return InventoryResult(
                quantity=corrected,
                quantity_warning=f"Max quantity: {corrected}",
                in_stock=True,
                source=InventorySource.CART_HACK,
                confidence=Confidence.ESTIMATED,
            )
    return None


async def attempt_cart_hack(page, sentinel: int = CART_HACK_SENTINEL, wait: float = 0.5,
                            max_clicks: int = MAX_INCREMENT_CLICKS) -> Optional[InventoryResult]:
    """
    Provoke a quantity-limit message from the add-to-cart flow.

    With a quantity input: write the sentinel, read the feedback, and put the
    original value back no matter what happened. Without one: add to cart and
    click the increment control until it stops.

    Returns:
        exact result for a parsed limit message, estimated for an input that
        clamped itself below the sentinel, None otherwise
    """
    controls = await page.evaluate_function(CART_CONTROLS, PROBE_ATTR) or {}
    if not controls.get('hasAddButton'):
        logger.debug("Cart-hack: no add-to-cart control")
        return None

    if controls.get('hasInput'):
        original = controls.get('inputValue')
        try:
            await page.evaluate_function(SET_QUANTITY, PROBE_ATTR, sentinel)
            await page.wait_for_timeout(wait)
            feedback = await page.evaluate_function(CART_FEEDBACK, PROBE_ATTR)
        finally:
            await page.evaluate_function(SET_QUANTITY, PROBE_ATTR, original if original is not None else '')
        return interpret_cart_feedback(feedback, sentinel)

    await page.evaluate_function(CLICK_ADD_TO_CART, PROBE_ATTR)
    await page.wait_for_timeout(wait)
    if controls.get('hasIncrement'):
        await page.evaluate_function(CLICK_INCREMENT, PROBE_ATTR, min(sentinel, max_clicks), 50)
        await page.wait_for_timeout(wait)
    feedback = await page.evaluate_function(CART_FEEDBACK, PROBE_ATTR)
    return interpret_cart_feedback(feedback, sentinel, check_input=False)


class CartHackBudget:
    """Caps how many products per location get the (slow) cart-hack."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def take(self) -> bool:
        if self.used >= self.limit:
            return False
        self.used += 1
        return True


# ============================================================
# CHAIN / MERGE
# ============================================================

async def resolve_page_inventory(page, budget: Optional[CartHackBudget] = None,
                                 cart_hack_wait: float = 0.5) -> InventoryResult:
    """
    Run the full chain against the page currently loaded in ``page``.

    The cart-hack budget is only consumed when steps 1-3 found nothing.
    """
    snapshot = await page.evaluate_function(PAGE_SNAPSHOT) or {}
    result = detect_inventory(snapshot.get('html') or '', snapshot.get('text'))
    if result is not None:
        return result

    if budget is not None and budget.take():
        await page.wait_for_timeout(cart_hack_wait)
        result = await attempt_cart_hack(page, wait=cart_hack_wait)
        if result is not None:
            return result

    return InventoryResult.unknown()


def apply_inventory(product: ScrapedProduct, result: InventoryResult) -> bool:
    """
    Merge a result into a product if its confidence is >= the recorded one.

    Returns:
        True if the product was updated
    """
    if result.confidence.rank < product.confidence.rank:
        return False

    product.quantity = result.quantity
    product.quantity_warning = result.quantity_warning
    product.in_stock = result.in_stock
    product.quantity_source = result.quantity_source
    product.confidence = result.confidence
    return True

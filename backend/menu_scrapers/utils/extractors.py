"""
Listing-page extraction.

Parses the rendered HTML snapshot of a menu page into ScrapedProducts using
cascading selector strategies, and collects product detail links.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ..base import InventoryResult, ScrapedProduct, now_ms
from ..config import (
    BRAND_SELECTOR,
    CATEGORY_SELECTOR,
    CBD_SELECTOR,
    DEFAULT_SOURCE_PLATFORM,
    NAME_SELECTOR,
    ORIGINAL_PRICE_SELECTOR,
    PRICE_ELEMENT_SELECTOR,
    PRODUCT_CARD_SELECTORS,
    PRODUCT_LINK_SELECTORS,
    SALE_PRICE_SELECTORS,
    THC_SELECTOR,
)
from ..errors import ExtractionError
from .inventory import apply_inventory, inventory_from_card
from .normalizers import all_prices, clean_text, normalize_potency, parse_loose_price, parse_price, slugify

logger = logging.getLogger(__name__)

GENERIC_PRICE_SELECTORS = (
    '[class*="price"]:not([class*="original"]):not([class*="strikethrough"])',
    '[class*="Price"]:not([class*="Original"]):not([class*="Strikethrough"])',
    '.price',
    '[data-testid*="price"]',
)

# Characters of a product name compared when matching links
NAME_MATCH_LENGTH = 20


@dataclass
class ListingCard:
    """A parsed product card and the inventory signal found on it."""
    product: ScrapedProduct
    inventory: InventoryResult


def find_product_cards(soup: Tag) -> List[Tag]:
    """
    Locate product card containers.

    Tries each card selector in order; if none match, walks up from
    price-looking elements (nearest link, product div, or grandparent).
    """
    for selector in PRODUCT_CARD_SELECTORS:
        cards = soup.select(selector)
        if cards:
            return cards

    cards: List[Tag] = []
    seen = set()
    for price_el in soup.select(PRICE_ELEMENT_SELECTOR):
        card = (
            price_el.find_parent('a')
            or price_el.find_parent(lambda t: t.name == 'div' and 'product' in ' '.join(t.get('class', [])))
            or (price_el.parent.parent if price_el.parent is not None else None)
        )
        if card is not None and id(card) not in seen:
            seen.add(id(card))
            cards.append(card)
    return cards


def _text_of(card: Tag, selector: str) -> Optional[str]:
    el = card.select_one(selector)
    if el is None:
        return None
    return clean_text(el.get_text(' ')) or None


def extract_price(card: Tag) -> float:
    """
    Current price of a card.

    Sale/current price selectors first, then generic price elements, then
    the smallest dollar amount anywhere in the card (sale prices are the
    minimum, not the original).
    """
    for selector in SALE_PRICE_SELECTORS + GENERIC_PRICE_SELECTORS:
        el = card.select_one(selector)
        if el is None:
            continue
        price = parse_price(el.get_text(' '))
        if price and price > 0:
            return price

    prices = all_prices(card.get_text(' '))
    return min(prices) if prices else 0.0


def extract_original_price(card: Tag, price: float) -> Optional[float]:
    """Struck-through price, only when above the current price."""
    el = card.select_one(ORIGINAL_PRICE_SELECTOR)
    if el is None:
        return None
    original = parse_loose_price(el.get_text(' '))
    if original is not None and original > price:
        return original
    return None


def extract_product_url(card: Tag, page_url: str) -> Optional[str]:
    """Detail page link: must contain /product/ but not /products/."""
    link = card.select_one('a[href*="/product/"]') or card.find('a', href=True)
    if link is None and card.name == 'a':
        link = card
    if link is None:
        link = card.find_parent('a')
    if link is None or not link.get('href'):
        return None

    href = urljoin(page_url, link['href'])
    if '/product/' in href and '/products/' not in href:
        return href
    return None


def parse_card(card: Tag, source_url: str, page_url: str, scraped_at: int) -> Optional[ListingCard]:
    """
    Parse one card.

    Returns:
        ListingCard, or None if the card has no usable name or price

    Raises:
        ExtractionError: The card markup could not be read
    """
    try:
        return _parse_card(card, source_url, page_url, scraped_at)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ExtractionError(f"Malformed product card: {e}") from e


def _parse_card(card: Tag, source_url: str, page_url: str, scraped_at: int) -> Optional[ListingCard]:
    name = _text_of(card, NAME_SELECTOR)
    if not name or len(name) < 3:
        return None

    price = extract_price(card)
    if price <= 0:
        return None

    img = card.find('img')
    image_url = urljoin(page_url, img['src']) if img is not None and img.get('src') else None

    product = ScrapedProduct(
        raw_product_name=name,
        raw_brand_name=_text_of(card, BRAND_SELECTOR) or 'Unknown',
        raw_category=_text_of(card, CATEGORY_SELECTOR),
        price=price,
        original_price=extract_original_price(card, price),
        image_url=image_url,
        thc_formatted=normalize_potency(_text_of(card, THC_SELECTOR)),
        cbd_formatted=normalize_potency(_text_of(card, CBD_SELECTOR)),
        source_url=source_url,
        source_platform=DEFAULT_SOURCE_PLATFORM,
        product_url=extract_product_url(card, page_url),
        scraped_at=scraped_at,
    )

    inventory = inventory_from_card(card)
    apply_inventory(product, inventory)
    return ListingCard(product=product, inventory=inventory)


def extract_listing(html: str, source_url: str, page_url: Optional[str] = None,
                    scraped_at: Optional[int] = None) -> List[ListingCard]:
    """
    Parse every product card on a rendered menu page.

    Args:
        html: Rendered HTML snapshot
        source_url: Configured menu URL (recorded on every product)
        page_url: Actual document URL, used to resolve relative links
        scraped_at: Epoch ms shared by all products of this page

    Returns:
        One ListingCard per card with a name and a positive price
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    page_url = page_url or source_url
    scraped_at = scraped_at if scraped_at is not None else now_ms()

    results = []
    for card in find_product_cards(soup):
        try:
            parsed = parse_card(card, source_url, page_url, scraped_at)
        except ExtractionError as e:
            logger.debug(f"Skipping card: {e}")
            continue
        if parsed is not None:
            results.append(parsed)
    return results


def extract_products(html: str, source_url: str, page_url: Optional[str] = None,
                     scraped_at: Optional[int] = None) -> List[ScrapedProduct]:
    """Convenience wrapper returning only the products."""
    return [card.product for card in extract_listing(html, source_url, page_url, scraped_at)]


# ============================================================
# PRODUCT LINKS
# ============================================================

def extract_product_links(html: str, page_url: str) -> List[Tuple[str, str]]:
    """
    Collect (name, url) pairs for product detail links on a page.

    Names come from a heading inside the link, the enclosing card, or the
    link text.
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    links: List[Tuple[str, str]] = []
    seen = set()

    for selector in PRODUCT_LINK_SELECTORS:
        for link in soup.select(selector):
            href = link.get('href')
            if not href:
                continue
            url = urljoin(page_url, href)
            if url in seen or '#' in url:
                continue
            seen.add(url)

            name_el = link.select_one(NAME_SELECTOR)
            if name_el is None:
                card = link.find_parent(
                    lambda t: t.get('data-testid') == 'product-card'
                    or 'ProductCard' in ' '.join(t.get('class', []))
                )
                if card is not None:
                    name_el = card.select_one(NAME_SELECTOR)
            name = clean_text((name_el or link).get_text(' '))

            if len(name) > 2:
                links.append((name, url))
    return links


def match_product_url(name: str, links: List[Tuple[str, str]]) -> Optional[str]:
    """
    Find a detail URL for a product by name.

    Matches when either name contains the other's first 20 characters, or
    the URL contains the slugified name.
    """
    name_lower = name.lower()
    prefix = name_lower[:NAME_MATCH_LENGTH]
    slug = slugify(name)[:NAME_MATCH_LENGTH]

    for link_name, url in links:
        link_lower = link_name.lower()
        if (prefix in link_lower
                or link_lower[:NAME_MATCH_LENGTH] in name_lower
                or (slug and slug in url.lower())):
            return url
    return None


def assign_product_urls(products: List[ScrapedProduct], links: List[Tuple[str, str]]) -> int:
    """
    Give in-stock products without a quantity or URL a matched detail URL.

    Returns:
        Number of products that received a URL
    """
    matched = 0
    for product in products:
        if not product.needs_quantity or product.product_url:
            continue
        url = match_product_url(product.raw_product_name, links)
        if url:
            product.product_url = url
            matched += 1
    return matched

"""
Scrape targets and tuning for the menu scraper.

Defines:
- The static list of dispensary menu locations
- ScrapeOptions (timeouts, waits, parallelism, cart-hack budget)
- CSS selector sets used by listing and inventory extraction
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .base import Location


# ============================================================
# LOCATIONS
# ============================================================

LOCATIONS: List[Location] = [
    # ========== CONBUD ==========
    Location(
        name='CONBUD LES',
        menu_url='https://conbud.com/stores/conbud-les/products',
        retailer_slug='conbud-les',
        retailer_name='CONBUD',
        city='New York',
        region='nyc',
    ),
    Location(
        name='CONBUD Bronx',
        menu_url='https://conbud.com/stores/conbud-bronx/products',
        retailer_slug='conbud-bronx',
        retailer_name='CONBUD',
        city='Bronx',
        region='nyc',
    ),
    Location(
        name='CONBUD Yankee Stadium',
        menu_url='https://conbud.com/stores/conbud-yankee-stadium/products',
        retailer_slug='conbud-yankee-stadium',
        retailer_name='CONBUD',
        city='Bronx',
        region='nyc',
    ),

    # ========== GOTHAM ==========
    # One menu URL for every store; only the primary is scraped until the
    # embedded menu's store picker is driven.
    Location(
        name='Gotham CAURD',
        menu_url='https://gotham.nyc/menu/',
        retailer_slug='gotham-caurd',
        retailer_name='Gotham',
        street='3 E 3rd St',
        city='New York',
        region='nyc',
    ),
    Location(
        name='Gotham Hudson',
        menu_url='https://gotham.nyc/menu/',
        retailer_slug='gotham-hudson',
        retailer_name='Gotham',
        street='260 Warren St',
        city='Hudson',
        region='hudson_valley',
        disabled=True,
        disabled_reason='shared-url-no-selector',
    ),
    Location(
        name='Gotham Williamsburg',
        menu_url='https://gotham.nyc/menu/',
        retailer_slug='gotham-williamsburg',
        retailer_name='Gotham',
        street='300 Kent Ave',
        city='Brooklyn',
        region='nyc',
        disabled=True,
        disabled_reason='shared-url-no-selector',
    ),
    Location(
        name='Gotham Chelsea',
        menu_url='https://gotham.nyc/menu/',
        retailer_slug='gotham-chelsea',
        retailer_name='Gotham',
        street='146 10th Ave',
        city='New York',
        region='nyc',
        disabled=True,
        disabled_reason='shared-url-no-selector',
    ),

    # ========== SINGLE-STORE RETAILERS ==========
    Location(
        name='Housing Works Cannabis',
        menu_url='https://hwcannabis.co/',
        retailer_slug='housing-works-cannabis',
        retailer_name='Housing Works Cannabis',
        street='750 Broadway',
        city='New York',
        region='nyc',
    ),
    Location(
        name='Travel Agency Union Square',
        menu_url='https://www.thetravelagency.co/menu/',
        retailer_slug='travel-agency-union-square',
        retailer_name='The Travel Agency',
        street='835 Broadway',
        city='New York',
        region='nyc',
    ),
    Location(
        name='Dagmar Cannabis SoHo',
        menu_url='https://dagmarcannabis.com/menu/',
        retailer_slug='dagmar-cannabis-soho',
        retailer_name='Dagmar Cannabis',
        street='412 W Broadway',
        city='New York',
        region='nyc',
    ),
    Location(
        name='Smacked Village',
        menu_url='https://getsmacked.online/menu/',
        retailer_slug='smacked-village',
        retailer_name='Get Smacked',
        street='144 Bleecker St',
        city='New York',
        region='nyc',
    ),

    # ========== STRAIN STARS ==========
    Location(
        name='Strain Stars Farmingdale',
        menu_url='https://strainstarsny.com/menu/',
        retailer_slug='strain-stars-farmingdale',
        retailer_name='Strain Stars',
        street='1815 Broadhollow Rd',
        city='Farmingdale',
        region='long_island',
    ),
    Location(
        name='Strain Stars Riverhead',
        menu_url='https://strainstarsny.com/menu/',
        retailer_slug='strain-stars-riverhead',
        retailer_name='Strain Stars',
        street='1871 Old Country Rd',
        city='Riverhead',
        region='long_island',
        disabled=True,
        disabled_reason='shared-url-no-selector',
    ),

    # ========== JUST BREATHE ==========
    Location(
        name='Just Breathe Syracuse',
        menu_url='https://justbreathelife.org/menu/',
        retailer_slug='just-breathe-syracuse',
        retailer_name='Just Breathe',
        street='185 W Seneca St',
        city='Manlius',
        region='upstate',
        disabled=True,
        disabled_reason='url-404',
    ),
    Location(
        name='Just Breathe Binghamton',
        menu_url='https://justbreathelife.org/menu/',
        retailer_slug='just-breathe-binghamton',
        retailer_name='Just Breathe',
        street='75 Court St',
        city='Binghamton',
        region='upstate',
        disabled=True,
        disabled_reason='url-404',
    ),
    Location(
        name='Just Breathe Finger Lakes',
        menu_url='https://justbreatheflx.com/',
        retailer_slug='just-breathe-finger-lakes',
        retailer_name='Just Breathe',
        street='2988 US Route 20',
        city='Seneca Falls',
        region='upstate',
    ),
]


# ============================================================
# TUNING
# ============================================================

@dataclass
class ScrapeOptions:
    """Per-batch tuning. All durations are seconds."""
    cdp_timeout: float = 30.0
    navigation_timeout: float = 30.0
    menu_render_wait: float = 3.0
    age_gate_wait: float = 2.0
    scroll_passes: int = 0
    location_attempts: int = 3
    location_retry_delay: float = 2.0       # multiplied by the attempt number
    location_delay: float = 2.0

    # Detail pages
    max_detail_page_visits: int = 40
    parallel_page_count: int = 4
    detail_page_timeout: float = 4.0
    page_render_wait: float = 1.5
    batch_delay: float = 0.5

    # Cart-hack
    enable_cart_hack: bool = True
    max_cart_hack_attempts: int = 3
    cart_hack_wait: float = 0.5

    # Resilience
    session_retries: int = 3
    session_retry_delay: float = 2.0
    navigation_retries: int = 2
    navigation_retry_delay: float = 2.0
    breaker_failure_threshold: int = 3
    breaker_reset_time: float = 120.0

    # Downstream
    post_results: bool = True
    ingest_timeout: float = 60.0
    notify_timeout: float = 30.0
    webhook_timeout: float = 10.0
    notify_max_events: int = 25

    debug: bool = False


@dataclass
class ScrapeCredentials:
    """Secrets and endpoints supplied by the environment."""
    browserbase_api_key: str
    browserbase_project_id: str
    browserbase_api_url: str = 'https://www.browserbase.com'
    ingest_base_url: Optional[str] = None
    notify_base_url: Optional[str] = None
    discord_webhook_url: Optional[str] = None

    @property
    def has_browser(self) -> bool:
        return bool(self.browserbase_api_key and self.browserbase_project_id)


# ============================================================
# SELECTORS
# ============================================================

AGE_GATE_EXACT: Tuple[str, ...] = ('yes', 'i am 21', 'i am 21+', 'i agree')
AGE_GATE_CONTAINS: Tuple[str, ...] = ('21+', 'enter')

PRODUCT_CARD_SELECTORS: Tuple[str, ...] = (
    '[data-testid="product-card"]',
    '.product-card',
    '[class*="ProductCard"]',
    '[class*="product-card"]',
    'div[class*="styles_productCard"]',
)

PRICE_ELEMENT_SELECTOR = '[class*="price"], [class*="Price"]'

NAME_SELECTOR = 'h2, h3, [class*="productName"], [class*="ProductName"], [class*="name"]'
BRAND_SELECTOR = '[class*="brandName"], [class*="BrandName"], [class*="brand"]'
CATEGORY_SELECTOR = '[class*="category"], [class*="Category"]'
THC_SELECTOR = '[class*="thc"], [class*="THC"]'
CBD_SELECTOR = '[class*="cbd"], [class*="CBD"]'

SALE_PRICE_SELECTORS: Tuple[str, ...] = (
    '[class*="DiscountedPrice"]',
    '[class*="discountedPrice"]',
    '[class*="SalePrice"]',
    '[class*="salePrice"]',
    '[class*="CurrentPrice"]',
    '[class*="currentPrice"]',
    '[class*="FinalPrice"]',
    '[class*="finalPrice"]',
)

ORIGINAL_PRICE_SELECTOR = (
    '[class*="original"], [class*="Original"], [class*="strikethrough"], '
    '[class*="Strikethrough"], del, s'
)

OUT_OF_STOCK_SELECTORS: Tuple[str, ...] = (
    '[class*="outOfStock"]',
    '[class*="soldOut"]',
    '[class*="OutOfStock"]',
    '[class*="SoldOut"]',
    '[class*="unavailable"]',
)

LOW_STOCK_SELECTOR = (
    '[class*="lowStock"], [class*="LowStock"], [class*="low-stock"], '
    '[class*="inventory"], [class*="Inventory"]'
)

PRODUCT_LINK_SELECTORS: Tuple[str, ...] = (
    'a[href*="/product/"]',
    '[data-testid="product-card"] a',
    '[class*="ProductCard"] a',
    '[class*="product-card"] a',
)

QUANTITY_SELECT_SELECTOR = 'select[name*="qty"], select[name*="quantity"], select[aria-label*="uantity"]'
QUANTITY_INPUT_SELECTOR = 'input[type="number"], input[name*="qty"], input[name*="quantity"]'

DEFAULT_SOURCE_PLATFORM = 'dutchie-embedded'


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_active_locations(locations: Optional[List[Location]] = None) -> List[Location]:
    """Locations that are not disabled."""
    return [loc for loc in (LOCATIONS if locations is None else locations) if not loc.disabled]


def get_location(slug: str) -> Location:
    """
    Get a location by its retailer slug.

    Raises:
        ValueError: If the slug is not configured
    """
    for loc in LOCATIONS:
        if loc.retailer_slug == slug:
            return loc
    valid = ', '.join(sorted(loc.retailer_slug for loc in LOCATIONS))
    raise ValueError(f"Unknown location: '{slug}'. Valid locations: {valid}")


def list_locations() -> List[str]:
    """List all retailer slugs."""
    return [loc.retailer_slug for loc in LOCATIONS]


def get_location_summary() -> Dict:
    """Totals plus one entry per location, for display."""
    active = get_active_locations()
    return {
        'total': len(LOCATIONS),
        'active': len(active),
        'disabled': len(LOCATIONS) - len(active),
        'locations': [loc.to_dict() for loc in LOCATIONS],
    }

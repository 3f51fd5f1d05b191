"""
Data structures shared by the menu scraper.

Locations are static configuration; products, inventory results and batch
results are produced by one batch run and posted to ingestion as JSON.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
import logging
import time

logger = logging.getLogger(__name__)

# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# ============================================================
# ENUMS
# ============================================================

class Confidence(Enum):
    """How much an inventory signal can be trusted."""
    EXACT = "exact"
    ESTIMATED = "estimated"
    BOOLEAN = "boolean"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    Confidence.BOOLEAN: 0,
    Confidence.ESTIMATED: 1,
    Confidence.EXACT: 2,
}


class InventorySource(Enum):
    """Heuristic that produced an InventoryResult."""
    PAGE_TEXT = "page-text"
    QUANTITY_DROPDOWN = "quantity-dropdown"
    OUT_OF_STOCK_BADGE = "out-of-stock-badge"
    CART_HACK = "cart-hack"
    UNKNOWN = "unknown"


class QuantitySource(Enum):
    """Provenance of a product's quantity as sent to ingestion."""
    TEXT_PATTERN = "text_pattern"
    CART_HACK = "cart_hack"
    DROPDOWN = "dropdown"
    INFERRED = "inferred"
    NONE = "none"


class BatchStatus(Enum):
    OK = "ok"
    ERROR = "error"


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class Location:
    """A dispensary menu to scrape."""
    name: str                           # Display name, e.g. 'Gotham CAURD'
    menu_url: str                       # Embedded menu page
    retailer_slug: str                  # Stable identifier sent as retailerId
    retailer_name: str
    region: str                         # nyc, long_island, upstate, ...
    city: str
    state: str = 'NY'
    street: Optional[str] = None
    disabled: bool = False              # Skipped by get_active_locations()
    disabled_reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'retailerSlug': self.retailer_slug,
            'retailerName': self.retailer_name,
            'menuUrl': self.menu_url,
            'region': self.region,
            'address': {'street': self.street, 'city': self.city, 'state': self.state},
            'status': 'disabled' if self.disabled else 'active',
            'disabledReason': self.disabled_reason,
        }


# ============================================================
# INVENTORY
# ============================================================

@dataclass
class InventoryResult:
    """Uniform output of every inventory heuristic."""
    quantity: Optional[int] = None
    quantity_warning: Optional[str] = None
    in_stock: bool = True
    source: InventorySource = InventorySource.UNKNOWN
    confidence: Confidence = Confidence.BOOLEAN

    def __post_init__(self):
        if self.quantity is not None and self.quantity < 0:
            raise ValueError(f"quantity cannot be negative: {self.quantity}")

    @property
    def has_quantity(self) -> bool:
        return self.quantity is not None

    @property
    def quantity_source(self) -> QuantitySource:
        """Map the heuristic onto the ingestion vocabulary."""
        if self.source in (InventorySource.PAGE_TEXT, InventorySource.OUT_OF_STOCK_BADGE):
            return QuantitySource.TEXT_PATTERN
        if self.source == InventorySource.QUANTITY_DROPDOWN:
            return QuantitySource.DROPDOWN
        if self.source == InventorySource.CART_HACK:
            if self.confidence == Confidence.EXACT:
                return QuantitySource.CART_HACK
            return QuantitySource.INFERRED
        return QuantitySource.NONE

    @classmethod
    def unknown(cls) -> 'InventoryResult':
        return cls()

    def to_dict(self) -> Dict:
        return {
            'quantity': self.quantity,
            'quantityWarning': self.quantity_warning,
            'inStock': self.in_stock,
            'source': self.source.value,
            'confidence': self.confidence.value,
        }


# ============================================================
# PRODUCTS / RESULTS
# ============================================================

@dataclass
class ScrapedProduct:
    """One product card from a menu page, plus its inventory signal."""
    raw_product_name: str
    raw_brand_name: str
    price: float
    source_url: str
    source_platform: str = 'dutchie-embedded'
    raw_category: Optional[str] = None
    original_price: Optional[float] = None
    image_url: Optional[str] = None
    thc_formatted: Optional[str] = None
    cbd_formatted: Optional[str] = None
    product_url: Optional[str] = None
    scraped_at: int = field(default_factory=now_ms)

    # Inventory
    in_stock: bool = True
    quantity: Optional[int] = None
    quantity_warning: Optional[str] = None
    quantity_source: QuantitySource = QuantitySource.NONE
    confidence: Confidence = Confidence.BOOLEAN

    @property
    def needs_quantity(self) -> bool:
        """In stock but no count yet (detail-page candidate)."""
        return self.in_stock and self.quantity is None

    def to_dict(self) -> Dict[str, Any]:
        """Ingestion payload shape (camelCase, optional fields omitted)."""
        data: Dict[str, Any] = {
            'rawProductName': self.raw_product_name,
            'rawBrandName': self.raw_brand_name,
            'price': self.price,
            'inStock': self.in_stock,
            'quantity': self.quantity,
            'quantityWarning': self.quantity_warning,
            'quantitySource': self.quantity_source.value,
            'sourceUrl': self.source_url,
            'sourcePlatform': self.source_platform,
            'scrapedAt': self.scraped_at,
        }
        optional = {
            'rawCategory': self.raw_category,
            'originalPrice': self.original_price,
            'imageUrl': self.image_url,
            'thcFormatted': self.thc_formatted,
            'cbdFormatted': self.cbd_formatted,
            'productUrl': self.product_url,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class InventoryStats:
    """Detail-page counters for one location."""
    checked: int = 0
    found: int = 0


@dataclass
class BatchResult:
    """Outcome for one location; one per active location in every batch."""
    retailer_id: str
    items: List[ScrapedProduct] = field(default_factory=list)
    status: BatchStatus = BatchStatus.OK
    error: Optional[str] = None
    attempts: int = 0
    inventory: InventoryStats = field(default_factory=InventoryStats)

    @property
    def ok(self) -> bool:
        return self.status == BatchStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'retailerId': self.retailer_id,
            'items': [item.to_dict() for item in self.items],
            'status': self.status.value,
            'attempts': self.attempts,
        }
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass
class BatchReport:
    """Everything one batch run produced."""
    batch_id: str
    started_at: datetime
    active_locations: int = 0
    disabled_locations: int = 0
    completed_at: Optional[datetime] = None
    results: List[BatchResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    ingestion: Optional[Dict[str, Any]] = None
    notification: Optional[Dict[str, Any]] = None
    summary_sent: bool = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def total_products(self) -> int:
        return sum(len(r.items) for r in self.results)

    @property
    def inventory_checked(self) -> int:
        return sum(r.inventory.checked for r in self.results)

    @property
    def inventory_found(self) -> int:
        return sum(r.inventory.found for r in self.results)

    @property
    def events_detected(self) -> Optional[int]:
        if self.ingestion:
            return self.ingestion.get('totalEventsDetected')
        return None

    def payload(self) -> Dict[str, Any]:
        """Body posted to the ingestion endpoint."""
        return {
            'batchId': self.batch_id,
            'results': [r.to_dict() for r in self.results],
        }

    def summary(self) -> Dict[str, Any]:
        return {
            'batch_id': self.batch_id,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'locations': {
                'active': self.active_locations,
                'disabled': self.disabled_locations,
                'ok': self.success_count,
                'error': self.failure_count,
            },
            'products': self.total_products,
            'inventory': {
                'checked': self.inventory_checked,
                'found': self.inventory_found,
            },
            'events': self.events_detected,
            'errors': self.errors[:10],
            'summary_sent': self.summary_sent,
            'results': [
                {
                    'retailerId': r.retailer_id,
                    'status': r.status.value,
                    'products': len(r.items),
                    'attempts': r.attempts,
                    'error': r.error,
                }
                for r in self.results
            ],
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

"""
Remote-browser menu inventory scraper.

This package provides:
- A minimal Chrome DevTools Protocol client (crawlers/)
- Listing and inventory extraction heuristics (utils/)
- The batch orchestrator that scrapes every configured dispensary menu
"""

from .base import BatchReport, BatchResult, InventoryResult, Location, ScrapedProduct
from .config import LOCATIONS, ScrapeCredentials, ScrapeOptions, get_active_locations, get_location
from .manager import ScrapeOrchestrator, run_batch

__all__ = [
    'BatchReport',
    'BatchResult',
    'InventoryResult',
    'Location',
    'ScrapedProduct',
    'LOCATIONS',
    'ScrapeCredentials',
    'ScrapeOptions',
    'get_active_locations',
    'get_location',
    'ScrapeOrchestrator',
    'run_batch',
]

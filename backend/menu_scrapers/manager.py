"""
Scrape Manager - runs one batch over every active location.

One batch owns one remote browser. Locations are scraped sequentially with
per-location retries; product detail pages are visited concurrently over a
small pool of tabs sharing the browser's WebSocket. Results are posted to
ingestion and summarised to the operators whatever happened on the way.
"""

import asyncio
import logging
import secrets
from typing import Any, Callable, List, Optional, Tuple

import httpx

from .base import (
    BatchReport,
    BatchResult,
    BatchStatus,
    Colors,
    InventoryStats,
    Location,
    ScrapedProduct,
    now_ms,
    utc_now,
)
from .config import (
    AGE_GATE_CONTAINS,
    AGE_GATE_EXACT,
    LOCATIONS,
    ScrapeCredentials,
    ScrapeOptions,
    get_active_locations,
)
from .crawlers.session import BrowserSession
from .downstream import build_summary_embed, post_batch, send_summary, trigger_notifications
from .errors import NavigationError
from .utils import retry
from .utils.circuit_breaker import CircuitBreakerOptions, CircuitBreakerRegistry, default_registry
from .utils.extractors import assign_product_urls, extract_listing, extract_product_links
from .utils.inventory import CartHackBudget, apply_inventory, resolve_page_inventory
from .utils.retry import DEFAULT_RETRYABLE_EXCEPTIONS, with_retry
from .utils.scripts import DISMISS_AGE_GATE, PAGE_SNAPSHOT, SCROLL

logger = logging.getLogger(__name__)

BROWSERBASE_CIRCUIT = 'browserbase'


def generate_batch_id() -> str:
    """batch-<epoch ms>-<6 hex chars>"""
    return f"batch-{now_ms()}-{secrets.token_hex(3)}"


class PagePool:
    """
    The session's main page plus extra tabs for parallel detail visits.

    Tabs that fail to open are skipped; the pool just runs smaller.
    Only the extra tabs are closed afterwards; the main page belongs to the
    session.
    """

    def __init__(self, session, size: int):
        self.session = session
        self.size = max(1, size)
        self.pages: List[Any] = []
        self._extra: List[Any] = []

    async def __aenter__(self) -> 'PagePool':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        main = self.session.get_page()
        if main is not None:
            self.pages.append(main)

        while len(self.pages) < self.size:
            try:
                page = await self.session.create_page()
            except Exception as e:
                logger.warning(f"Failed to create page {len(self.pages) + 1}/{self.size}: {e}")
                break
            self.pages.append(page)
            self._extra.append(page)

        logger.debug(f"Page pool ready: {len(self.pages)} concurrent pages")

    async def close(self):
        for page in self._extra:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing pooled page: {e}")
        self._extra = []
        self.pages = []


class ScrapeOrchestrator:
    """
    Drives a full batch.

    Usage:
        orchestrator = ScrapeOrchestrator(settings.credentials(), settings.scrape_options())
        report = await orchestrator.run_batch()
        print(report.summary())
    """

    def __init__(
        self,
        credentials: ScrapeCredentials,
        options: Optional[ScrapeOptions] = None,
        locations: Optional[List[Location]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            credentials: BrowserBase keys and downstream endpoints
            options: Tuning (defaults to ScrapeOptions())
            locations: Locations to consider (defaults to config.LOCATIONS)
            breakers: Circuit breaker registry (defaults to the process-wide one)
            session_factory: Builds an uninitialised browser session
            http_client: Shared client for downstream calls
        """
        self.credentials = credentials
        self.options = options or ScrapeOptions()
        self.locations = list(LOCATIONS if locations is None else locations)
        self.breakers = breakers if breakers is not None else default_registry
        self.session_factory = session_factory or self._default_session
        self.http_client = http_client

    def _default_session(self) -> BrowserSession:
        return BrowserSession(
            self.credentials.browserbase_api_key,
            self.credentials.browserbase_project_id,
            api_url=self.credentials.browserbase_api_url,
            cdp_timeout=self.options.cdp_timeout,
            debug=self.options.debug,
            http_client=self.http_client,
        )

    # ============================================================
    # BATCH
    # ============================================================

    async def run_batch(self) -> BatchReport:
        """Scrape every active location and report the results. Never raises."""
        active = get_active_locations(self.locations)
        report = BatchReport(
            batch_id=generate_batch_id(),
            started_at=utc_now(),
            active_locations=len(active),
            disabled_locations=len(self.locations) - len(active),
        )

        logger.info(f"Starting scrape batch {report.batch_id}")
        logger.info(f"Scraping {len(active)} locations ({report.disabled_locations} disabled)")

        session = None
        try:
            session = await self.open_session()
        except Exception as e:
            logger.error(Colors.red(f"Browser connection failed: {e}"))
            report.errors.append(f"BrowserBase: {e}")
        else:
            for location in active:
                result = await self.scrape_location_with_retry(session, location)
                report.results.append(result)
                if not result.ok:
                    report.errors.append(f"{location.name}: {result.error}")
                await retry.sleep(self.options.location_delay)
        finally:
            if session is not None:
                await session.close()

        report.completed_at = utc_now()
        await self.report(report)

        logger.info(
            f"Batch {report.batch_id} complete: {report.success_count}/{report.active_locations} "
            f"active locations, {report.total_products} products, "
            f"{report.inventory_found} inventory counts, {round(report.duration_seconds or 0)}s"
        )
        return report

    async def open_session(self):
        """
        Initialise a browser session behind the circuit breaker and retries.

        A session that failed half-way through init() is closed before the
        next attempt.
        """
        opts = self.options

        async def attempt():
            session = self.session_factory()
            try:
                await session.init()
            except Exception:
                await session.close()
                raise
            return session

        def on_retry(n: int, error: BaseException, delay: float):
            logger.warning(f"BrowserBase retry {n}: {error}, waiting {delay:.1f}s")

        async def acquire():
            return await with_retry(
                attempt,
                max_retries=opts.session_retries,
                base_delay=opts.session_retry_delay,
                on_retry=on_retry,
            )

        return await self.breakers.call(
            BROWSERBASE_CIRCUIT,
            acquire,
            CircuitBreakerOptions(
                failure_threshold=opts.breaker_failure_threshold,
                reset_time=opts.breaker_reset_time,
            ),
        )

    # ============================================================
    # LOCATIONS
    # ============================================================

    async def scrape_location_with_retry(self, session, location: Location) -> BatchResult:
        """Up to location_attempts tries; always returns a BatchResult."""
        attempts = self.options.location_attempts
        last_error: Optional[str] = None

        for attempt in range(1, attempts + 1):
            logger.info(f"Scraping {location.name} (attempt {attempt}/{attempts})...")
            try:
                products, stats = await self.scrape_location(session, location)
            except Exception as e:
                last_error = str(e) or e.__class__.__name__
                logger.error(Colors.red(f"✗ {location.name} attempt {attempt}: {last_error}"))
                if attempt < attempts:
                    await retry.sleep(self.options.location_retry_delay * attempt)
                continue

            logger.info(Colors.green(
                f"✓ {location.name}: {len(products)} products "
                f"(inventory: {stats.found}/{stats.checked})"
            ))
            return BatchResult(
                retailer_id=location.retailer_slug,
                items=products,
                status=BatchStatus.OK,
                attempts=attempt,
                inventory=stats,
            )

        return BatchResult(
            retailer_id=location.retailer_slug,
            status=BatchStatus.ERROR,
            error=last_error or 'Unknown scraping error',
            attempts=attempts,
        )

    async def scrape_location(self, session, location: Location) -> Tuple[List[ScrapedProduct], InventoryStats]:
        """
        One attempt at one location.

        Raises whatever the browser raised; the caller retries.
        """
        opts = self.options
        scraped_at = now_ms()

        def on_nav_retry(n: int, error: BaseException, delay: float):
            logger.warning(f"Navigation retry {n} for {location.name}: {error}")

        await with_retry(
            lambda: session.goto(location.menu_url, timeout=opts.navigation_timeout),
            max_retries=opts.navigation_retries,
            base_delay=opts.navigation_retry_delay,
            retryable_exceptions=DEFAULT_RETRYABLE_EXCEPTIONS + (NavigationError,),
            on_retry=on_nav_retry,
        )
        await session.wait_for_timeout(opts.menu_render_wait)

        clicked = await session.evaluate_function(DISMISS_AGE_GATE, list(AGE_GATE_EXACT), list(AGE_GATE_CONTAINS))
        if clicked:
            logger.debug(f"{location.name}: dismissed age gate ('{clicked}')")
        await session.wait_for_timeout(opts.age_gate_wait)

        for n in range(1, opts.scroll_passes + 1):
            await session.evaluate_function(SCROLL, n / opts.scroll_passes)
            await session.wait_for_timeout(opts.page_render_wait)

        snapshot = await session.evaluate_function(PAGE_SNAPSHOT) or {}
        html = snapshot.get('html') or ''
        page_url = snapshot.get('url') or location.menu_url

        products = [card.product for card in extract_listing(html, location.menu_url, page_url, scraped_at)]
        logger.info(f"{location.name}: Found {len(products)} products on listing page")

        if any(p.needs_quantity and not p.product_url for p in products):
            links = extract_product_links(html, page_url)
            matched = assign_product_urls(products, links)
            logger.debug(f"{location.name}: {len(links)} product links, {matched} matched by name")

        candidates = [p for p in products if p.needs_quantity and p.product_url]
        candidates = candidates[:opts.max_detail_page_visits]

        stats = InventoryStats()
        if candidates:
            logger.info(
                f"{location.name}: Checking {len(candidates)} product detail pages "
                f"(parallel={opts.parallel_page_count})"
            )
            await self.resolve_detail_pages(session, candidates, stats)
            logger.info(f"{location.name}: Inventory found for {stats.found}/{stats.checked} products checked")

        return products, stats

    # ============================================================
    # DETAIL PAGES
    # ============================================================

    async def resolve_detail_pages(self, session, products: List[ScrapedProduct], stats: InventoryStats):
        """Visit detail pages in pool-sized batches, fully parallel within a batch."""
        opts = self.options
        budget = CartHackBudget(opts.max_cart_hack_attempts if opts.enable_cart_hack else 0)

        async with PagePool(session, opts.parallel_page_count) as pool:
            size = len(pool.pages)
            if size == 0:
                logger.warning("No pages available for detail visits")
                return

            for start in range(0, len(products), size):
                batch = products[start:start + size]
                await asyncio.gather(*(
                    self.visit_detail_page(page, product, budget, stats)
                    for page, product in zip(pool.pages, batch)
                ))
                if start + size < len(products):
                    await retry.sleep(opts.batch_delay)

    async def visit_detail_page(self, page, product: ScrapedProduct, budget: CartHackBudget, stats: InventoryStats):
        """Navigate one pooled page to a product and merge what it shows."""
        opts = self.options
        stats.checked += 1
        name = product.raw_product_name

        try:
            await page.navigate(product.product_url, timeout=opts.detail_page_timeout)
            await page.wait_for_timeout(opts.page_render_wait)
            result = await resolve_page_inventory(page, budget, opts.cart_hack_wait)
        except Exception as e:
            logger.info(f"✗ {name[:25]}: {str(e)[:60]}")
            return

        if result.has_quantity and apply_inventory(product, result):
            stats.found += 1
            logger.info(f"✓ {name[:30]}: {result.quantity} left ({result.source.value})")

    # ============================================================
    # DOWNSTREAM
    # ============================================================

    async def report(self, report: BatchReport):
        """Ingestion, notification trigger and Discord summary. Never raises."""
        creds = self.credentials
        opts = self.options

        if not opts.post_results:
            logger.info("Posting disabled; skipping ingestion and notifications")
            return

        if creds.ingest_base_url:
            try:
                report.ingestion = await post_batch(
                    creds.ingest_base_url, report, client=self.http_client, timeout=opts.ingest_timeout
                )
                logger.info(f"Posted {len(report.results)} results to ingestion: {report.ingestion}")
            except Exception as e:
                logger.error(f"Ingestion failed after retries: {e}")
                report.errors.append(f"Ingestion: {e}")
        else:
            logger.warning("No ingestion URL configured; results not posted")

        notify_base = creds.notify_base_url or creds.ingest_base_url
        if notify_base and creds.discord_webhook_url:
            try:
                report.notification = await trigger_notifications(
                    notify_base,
                    creds.discord_webhook_url,
                    client=self.http_client,
                    timeout=opts.notify_timeout,
                    max_events=opts.notify_max_events,
                )
            except Exception as e:
                logger.error(f"Notification trigger failed: {e}")

        if creds.discord_webhook_url:
            embed = build_summary_embed(report)
            report.summary_sent = await send_summary(
                creds.discord_webhook_url, embed, client=self.http_client, timeout=opts.webhook_timeout
            )
            if not report.summary_sent:
                logger.error("Failed to send Discord summary after all retries")


# Convenience function for standalone usage

async def run_batch(
    credentials: ScrapeCredentials,
    options: Optional[ScrapeOptions] = None,
    locations: Optional[List[Location]] = None
) -> BatchReport:
    """Run one batch with the process-wide circuit breakers."""
    async with httpx.AsyncClient(timeout=60.0) as client:
        orchestrator = ScrapeOrchestrator(credentials, options, locations, http_client=client)
        return await orchestrator.run_batch()

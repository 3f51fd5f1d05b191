from contextlib import asynccontextmanager
from fastapi import FastAPI, BackgroundTasks, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import logging
import asyncio
import re

from api.config import settings
from menu_scrapers.base import BatchReport
from menu_scrapers.config import get_location_summary
from menu_scrapers.manager import BROWSERBASE_CIRCUIT, run_batch
from menu_scrapers.utils.circuit_breaker import default_registry
from menu_scrapers.utils.scripts import SCRIPT_LIBRARY_VERSION

SERVICE_NAME = "menu-scrapers"
SERVICE_VERSION = "1.0.0"

FEATURES = [
    "cdp-native-client",
    "per-location-retry",
    "circuit-breaker",
    "exponential-backoff",
    "webhook-retry",
    "disabled-location-support",
    "product-detail-page-inventory",
    "cart-hack-fallback",
    "parallel-page-pool",
    "concurrent-product-visits",
]

# Setup logging directory
settings.log_dir.mkdir(exist_ok=True)


# Custom formatter to strip ANSI color codes from file logs
class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)


# Setup logging with color support for console, stripped for file
file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
file_handler.setFormatter(ColorStripFormatter(settings.log_format))

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter(settings.log_format))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[file_handler, console_handler],
    force=True  # Override any existing configuration
)

# Scraper logs go through their own handlers exactly once
scraper_logger = logging.getLogger('menu_scrapers')
scraper_logger.propagate = False
# Only add handlers if not already present (prevents duplicates on module reload)
if not scraper_logger.handlers:
    scraper_file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
    scraper_file_handler.setFormatter(ColorStripFormatter(settings.log_format))
    scraper_logger.addHandler(scraper_file_handler)

    scraper_console_handler = logging.StreamHandler()
    scraper_console_handler.setFormatter(logging.Formatter(settings.log_format))
    scraper_logger.addHandler(scraper_console_handler)
scraper_logger.setLevel(getattr(logging, settings.log_level.upper()))

logger = logging.getLogger(__name__)


# Global shutdown event
shutdown_event = asyncio.Event()

# One batch at a time; scheduled runs that find the lock held are skipped
batch_lock = asyncio.Lock()
last_batch: Dict[str, Any] = {}


async def run_scheduled_batch() -> Optional[BatchReport]:
    """Run one batch unless another is already in progress."""
    if batch_lock.locked():
        logger.warning("Previous batch still running, skipping this run")
        return None

    async with batch_lock:
        try:
            report = await run_batch(settings.credentials(), settings.scrape_options())
        except Exception as e:
            logger.error(f"Batch crashed: {e}", exc_info=True)
            return None
        last_batch.clear()
        last_batch.update(report.summary())
        return report


async def scheduler_loop(interval_seconds: float):
    """Run a batch every interval until shutdown."""
    logger.info(f"Scheduler started: every {interval_seconds / 60:g} minutes")
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            await run_scheduled_batch()
    logger.info("Scheduler stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the batch scheduler and stops it on shutdown.
    """
    # Startup
    logger.info("=" * 60)
    logger.info("Menu Scrapers Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Ingestion: {settings.ingest_base_url or 'not configured'}")

    scheduler_task = None
    if settings.scrape_interval_minutes > 0 and settings.has_browser:
        shutdown_event.clear()
        scheduler_task = asyncio.create_task(scheduler_loop(settings.scrape_interval_minutes * 60))
    elif not settings.has_browser:
        logger.warning("BrowserBase credentials missing; scheduler disabled")
    else:
        logger.info("Scheduler disabled (scrape_interval_minutes=0)")

    yield  # Application runs here

    # Shutdown
    logger.info("=" * 60)
    logger.info("Menu Scrapers Shutting Down")
    logger.info("=" * 60)

    shutdown_event.set()
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await asyncio.wait_for(scheduler_task, timeout=5.0)
        except asyncio.CancelledError:
            pass
        except asyncio.TimeoutError:
            logger.warning("Scheduler shutdown timed out")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Menu Scrapers",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": [
            "GET /health - Service health with location stats",
            "POST /trigger - Manual scrape trigger",
            "GET /locations - All locations with status",
        ],
    }


@app.get("/health")
async def health():
    """Service health, effective tuning and circuit state."""
    summary = get_location_summary()
    options = settings.scrape_options()
    interval = settings.scrape_interval_minutes
    circuit = default_registry.snapshot().get(BROWSERBASE_CIRCUIT)

    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "scriptLibrary": SCRIPT_LIBRARY_VERSION,
        "locations": {
            "total": summary["total"],
            "active": summary["active"],
            "disabled": summary["disabled"],
        },
        "schedule": f"*/{interval} * * * *" if interval > 0 else None,
        "browserConfigured": settings.has_browser,
        "features": FEATURES,
        "config": {
            "maxDetailPageVisits": options.max_detail_page_visits,
            "parallelPageCount": options.parallel_page_count,
            "pageRenderWait": options.page_render_wait,
            "detailPageTimeout": options.detail_page_timeout,
            "cartHackEnabled": options.enable_cart_hack,
            "maxCartHackAttempts": options.max_cart_hack_attempts,
        },
        "circuit": circuit or {"state": "closed", "failures": 0},
        "batchRunning": batch_lock.locked(),
        "lastBatch": last_batch or None,
    }


@app.post("/trigger")
async def trigger(background_tasks: BackgroundTasks):
    """Start a batch in the background."""
    if not settings.has_browser:
        raise HTTPException(status_code=503, detail="BrowserBase credentials not configured")
    if batch_lock.locked():
        raise HTTPException(status_code=409, detail="A batch is already running")

    background_tasks.add_task(run_scheduled_batch)
    logger.info("Manual scrape triggered")
    return {
        "triggered": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": "Scrape triggered, check Discord for results",
    }


@app.get("/locations")
async def locations():
    return get_location_summary()

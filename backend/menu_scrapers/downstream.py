"""
Clients for the services a batch reports to.

- Ingestion:      POST {ingest_base_url}/scraped-batch  {batchId, results}
- Notifications:  POST {notify_base_url}/notify         {webhookUrl, maxEvents}
- Discord:        POST <webhook>                        {embeds: [embed]}
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .base import BatchReport, utc_now
from .errors import DownstreamError
from .utils.retry import fetch_with_retry

logger = logging.getLogger(__name__)

SUMMARY_TITLE = "Menu Scrape Complete"
SUMMARY_FOOTER = "menu-scrapers - parallel page visits"

COLOR_OK = 0x00ff00
COLOR_PARTIAL = 0xffaa00
COLOR_FAILED = 0xff0000

MAX_ERROR_LINES = 5
MAX_ERROR_CHARS = 1000


def _log_retry(label: str):
    def on_retry(attempt: int, error: BaseException, delay: float):
        logger.warning(f"{label} retry {attempt}: {error}, waiting {delay:.1f}s")
    return on_retry


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {'data': data}


async def post_batch(
    base_url: str,
    report: BatchReport,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 60.0
) -> Dict[str, Any]:
    """
    Post a batch to the ingestion service.

    Raises:
        DownstreamError: Non-2xx response after retries
    """
    response = await fetch_with_retry(
        f"{base_url.rstrip('/')}/scraped-batch",
        json=report.payload(),
        headers={'Content-Type': 'application/json'},
        timeout=timeout,
        client=client,
        max_retries=3,
        base_delay=2.0,
        on_retry=_log_retry("Ingestion"),
    )
    if not response.is_success:
        raise DownstreamError(
            f"Ingestion failed: {response.status_code} - {response.text[:200]}",
            status=response.status_code
        )
    return _json_or_empty(response)


async def trigger_notifications(
    base_url: str,
    webhook_url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
    max_events: int = 25
) -> Optional[Dict[str, Any]]:
    """
    Ask the notification service to flush queued inventory events.

    Returns:
        The service's response body, or None on a non-2xx response
    """
    response = await fetch_with_retry(
        f"{base_url.rstrip('/')}/notify",
        json={'webhookUrl': webhook_url, 'maxEvents': max_events},
        headers={'Content-Type': 'application/json'},
        timeout=timeout,
        client=client,
        max_retries=2,
        base_delay=1.0,
    )
    if not response.is_success:
        logger.error(f"Notification trigger failed: {response.status_code}")
        return None
    return _json_or_empty(response)


def summary_color(report: BatchReport) -> int:
    failed = report.failure_count
    if failed == 0:
        return COLOR_OK
    if failed < report.success_count:
        return COLOR_PARTIAL
    return COLOR_FAILED


def build_summary_embed(report: BatchReport) -> Dict[str, Any]:
    """Discord embed describing a finished batch."""
    duration = round(report.duration_seconds or 0)
    events = report.events_detected

    fields = [
        {'name': 'Batch ID', 'value': report.batch_id, 'inline': True},
        {'name': 'Duration', 'value': f"{duration}s", 'inline': True},
        {
            'name': 'Locations',
            'value': f"{report.success_count}/{report.active_locations} ({report.disabled_locations} disabled)",
            'inline': True,
        },
        {'name': 'Products', 'value': str(report.total_products), 'inline': True},
        {
            'name': 'Inventory',
            'value': f"{report.inventory_found}/{report.inventory_checked} checked",
            'inline': True,
        },
        {'name': 'Events', 'value': str(events) if events is not None else 'N/A', 'inline': True},
    ]

    if report.errors:
        fields.append({
            'name': 'Error Details',
            'value': '\n'.join(report.errors[:MAX_ERROR_LINES])[:MAX_ERROR_CHARS],
            'inline': False,
        })

    return {
        'title': SUMMARY_TITLE,
        'color': summary_color(report),
        'fields': fields,
        'footer': {'text': SUMMARY_FOOTER},
        'timestamp': utc_now().isoformat(),
    }


async def send_summary(
    webhook_url: str,
    embed: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0
) -> bool:
    """Post the summary embed. Returns False instead of raising."""
    try:
        response = await fetch_with_retry(
            webhook_url,
            json={'embeds': [embed]},
            headers={'Content-Type': 'application/json'},
            timeout=timeout,
            client=client,
            max_retries=3,
            base_delay=1.0,
        )
    except Exception as e:
        logger.error(f"Discord summary failed after retries: {e}")
        return False
    return response.is_success

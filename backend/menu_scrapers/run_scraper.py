#!/usr/bin/env python3
"""
Run a scrape batch by hand.

Usage:
    cd backend
    python -m menu_scrapers.run_scraper [--location SLUG ...]

Examples:
    python -m menu_scrapers.run_scraper --list                    # List locations
    python -m menu_scrapers.run_scraper --location gotham-caurd   # One location
    python -m menu_scrapers.run_scraper --no-post --json          # Dry run, JSON summary
"""

import asyncio
import argparse
import logging
import json
import sys
from dataclasses import replace

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from api.config import settings
from menu_scrapers.base import BatchReport
from menu_scrapers.config import LOCATIONS, get_location, get_location_summary
from menu_scrapers.manager import run_batch


def list_locations():
    """Print every configured location."""
    print(f"\n{'='*60}")
    print("Configured Locations")
    print(f"{'='*60}\n")

    summary = get_location_summary()
    for loc in summary['locations']:
        status = "✅" if loc['status'] == 'active' else "⏸"
        print(f"{status} {loc['retailerSlug']:30} - {loc['name']}")
        print(f"   {loc['menuUrl']}")
        if loc['disabledReason']:
            print(f"   disabled: {loc['disabledReason']}")
    print(f"\n{summary['active']}/{summary['total']} active\n")


def print_report(report: BatchReport):
    summary = report.summary()
    print(f"\n{'='*60}")
    print(f"Batch {summary['batch_id']}")
    print(f"{'='*60}\n")

    for result in summary['results']:
        mark = "✓" if result['status'] == 'ok' else "✗"
        line = f"{mark} {result['retailerId']:30} {result['products']:4} products (attempts: {result['attempts']})"
        if result['error']:
            line += f" - {result['error']}"
        print(line)

    print()
    print(f"Locations: {summary['locations']['ok']}/{summary['locations']['active']} "
          f"({summary['locations']['disabled']} disabled)")
    print(f"Products:  {summary['products']}")
    print(f"Inventory: {summary['inventory']['found']}/{summary['inventory']['checked']} checked")
    print(f"Duration:  {round(summary['duration_seconds'] or 0)}s")
    for error in summary['errors']:
        print(f"  ERROR: {error}")


async def main():
    parser = argparse.ArgumentParser(description='Run a menu scrape batch')
    parser.add_argument('--list', action='store_true', help='List all locations')
    parser.add_argument('--location', nargs='+', metavar='SLUG', help='Only scrape these locations')
    parser.add_argument('--no-post', action='store_true', help='Do not post to ingestion or Discord')
    parser.add_argument('--json', action='store_true', help='Print the summary as JSON')

    args = parser.parse_args()

    if args.list:
        list_locations()
        return 0

    if not settings.browserbase_api_key or not settings.browserbase_project_id:
        print("BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID must be set")
        return 1

    locations = LOCATIONS
    if args.location:
        try:
            # Explicitly requested locations run even if disabled
            locations = [replace(get_location(slug), disabled=False) for slug in args.location]
        except ValueError as e:
            print(e)
            return 1

    options = settings.scrape_options()
    options.post_results = not args.no_post

    report = await run_batch(settings.credentials(), options, locations)

    if args.json:
        print(json.dumps(report.summary(), indent=2))
    else:
        print_report(report)

    return 0 if report.failure_count == 0 and not report.errors else 1


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))

"""
Tests for application and scraper configuration.
"""

import pytest

from menu_scrapers.base import Location
from menu_scrapers.config import (
    LOCATIONS,
    ScrapeOptions,
    get_active_locations,
    get_location,
    get_location_summary,
    list_locations,
)


class TestSettings:
    """Test the Settings configuration class."""

    def test_settings_defaults(self):
        """Test that settings have sensible defaults."""
        from api.config import Settings

        settings = Settings(_env_file=None)
        assert settings.api_host == "0.0.0.0"
        assert settings.api_port == 8000
        assert settings.scrape_interval_minutes == 15
        assert settings.log_level == "INFO"

    def test_settings_log_paths(self):
        """Test that log paths are valid."""
        from api.config import settings

        assert settings.log_dir is not None
        assert settings.log_file.name == "scraper.log"

    def test_scrape_options_from_settings(self):
        """Test that tuning is carried into ScrapeOptions."""
        from api.config import Settings

        settings = Settings(_env_file=None, parallel_page_count=2, enable_cart_hack=False, cdp_timeout=10)
        options = settings.scrape_options()

        assert isinstance(options, ScrapeOptions)
        assert options.parallel_page_count == 2
        assert options.enable_cart_hack is False
        assert options.cdp_timeout == 10

    def test_credentials_notify_falls_back_to_ingest(self):
        """Test that the notify base defaults to the ingestion base."""
        from api.config import Settings

        settings = Settings(_env_file=None, browserbase_api_key='k', browserbase_project_id='p',
                            ingest_base_url='https://ingest.test')
        credentials = settings.credentials()

        assert credentials.has_browser is True
        assert credentials.notify_base_url == 'https://ingest.test'

    def test_settings_from_environment(self, monkeypatch):
        """Test case-insensitive environment loading."""
        from api.config import Settings

        monkeypatch.setenv("BROWSERBASE_API_KEY", "bb_env")
        monkeypatch.setenv("SCRAPE_INTERVAL_MINUTES", "0")
        settings = Settings(_env_file=None)

        assert settings.browserbase_api_key == "bb_env"
        assert settings.scrape_interval_minutes == 0


class TestLocations:
    """Test the location table and helpers."""

    def test_location_counts(self):
        assert len(LOCATIONS) == 16
        assert len(get_active_locations()) == 10

    def test_slugs_are_unique(self):
        slugs = list_locations()
        assert len(slugs) == len(set(slugs))

    def test_disabled_locations_have_reasons(self):
        for loc in LOCATIONS:
            if loc.disabled:
                assert loc.disabled_reason

    def test_get_location(self):
        first = LOCATIONS[0]
        assert get_location(first.retailer_slug) is first

    def test_get_location_unknown(self):
        with pytest.raises(ValueError, match="Unknown location: 'nowhere'"):
            get_location('nowhere')

    def test_active_filter_on_custom_list(self):
        locations = [
            Location('A', 'https://a.test/menu', 'a', 'A', 'nyc', 'New York'),
            Location('B', 'https://b.test/menu', 'b', 'B', 'nyc', 'New York', disabled=True,
                     disabled_reason='url-404'),
        ]
        assert [loc.retailer_slug for loc in get_active_locations(locations)] == ['a']

    def test_location_summary(self):
        """Test totals and per-location status fields."""
        summary = get_location_summary()
        assert summary["total"] == 16
        assert summary['active'] == 10
        assert summary["disabled"] == 6
        statuses = {loc['status'] for loc in summary['locations']}
        assert statuses == {'active', 'disabled'}
        assert all('disabledReason' in loc for loc in summary['locations'])

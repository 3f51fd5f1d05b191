"""
Application Configuration
Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path

from menu_scrapers.config import ScrapeCredentials, ScrapeOptions


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # BrowserBase
    browserbase_api_key: str = ""
    browserbase_project_id: str = ""
    browserbase_api_url: str = "https://www.browserbase.com"

    # Downstream services
    ingest_base_url: Optional[str] = None
    notify_base_url: Optional[str] = None  # falls back to ingest_base_url
    discord_webhook_url: Optional[str] = None

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    cors_origins: List[str] = ["*"]

    # Scheduler (0 disables the in-process cron loop)
    scrape_interval_minutes: int = 15

    # Scraper Configuration (seconds)
    cdp_timeout: float = 30.0
    navigation_timeout: float = 30.0
    menu_render_wait: float = 3.0
    page_render_wait: float = 1.5
    detail_page_timeout: float = 4.0
    location_attempts: int = 3
    location_delay: float = 2.0
    parallel_page_count: int = 4
    max_detail_page_visits: int = 40
    enable_cart_hack: bool = True
    max_cart_hack_attempts: int = 3
    post_results: bool = True

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Paths
    @property
    def log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.log_dir / "scraper.log"

    @property
    def has_browser(self) -> bool:
        return bool(self.browserbase_api_key and self.browserbase_project_id)

    def scrape_options(self) -> ScrapeOptions:
        """Tuning for one batch, built from the environment."""
        return ScrapeOptions(
            cdp_timeout=self.cdp_timeout,
            navigation_timeout=self.navigation_timeout,
            menu_render_wait=self.menu_render_wait,
            page_render_wait=self.page_render_wait,
            detail_page_timeout=self.detail_page_timeout,
            location_attempts=self.location_attempts,
            location_delay=self.location_delay,
            parallel_page_count=self.parallel_page_count,
            max_detail_page_visits=self.max_detail_page_visits,
            enable_cart_hack=self.enable_cart_hack,
            max_cart_hack_attempts=self.max_cart_hack_attempts,
            post_results=self.post_results,
            debug=self.api_debug,
        )

    def credentials(self) -> ScrapeCredentials:
        return ScrapeCredentials(
            browserbase_api_key=self.browserbase_api_key,
            browserbase_project_id=self.browserbase_project_id,
            browserbase_api_url=self.browserbase_api_url,
            ingest_base_url=self.ingest_base_url,
            notify_base_url=self.notify_base_url or self.ingest_base_url,
            discord_webhook_url=self.discord_webhook_url,
        )

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


# Global settings instance
settings = Settings()

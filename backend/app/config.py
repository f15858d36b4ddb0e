"""
Runtime settings for the render manager.
Loaded from environment variables (and an optional .env file).
"""
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at backend/app/config.py -> 3 levels up
_PROJECT_ROOT = Path(__file__).resolve().parents[2]

ROLIMONS_TRADE_ADS_URL = "https://api.rolimons.com/tradeads/v1/getrecentads"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Server
    port: int = 3002
    public_dir: Path = _PROJECT_ROOT / "public"

    # Workers
    worker_urls: str = "http://localhost:3001"  # comma-separated, used when workers_file is missing
    workers_file: Path = Path.cwd() / "workers.json"
    render_timeout_seconds: float = 60.0
    health_timeout_seconds: float = 5.0
    overloaded_status: int = 367
    worker_memory_budget_mb: int = 512

    # Upstream feed
    feed_url: str = ROLIMONS_TRADE_ADS_URL
    feed_user_agent: str = BROWSER_USER_AGENT
    feed_timeout_seconds: float = 20.0
    poll_interval_seconds: float = 60.0

    # Image cache
    images_dir: Path = Path.cwd() / "images"
    cache_max_age_seconds: float = 10 * 60
    sweep_interval_seconds: float = 60 * 60

    # Logging
    log_dir: Path = Path("logs")

    def default_workers(self) -> List[str]:
        return [u.strip() for u in self.worker_urls.split(",") if u.strip()]


settings = Settings()

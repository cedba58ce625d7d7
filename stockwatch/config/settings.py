# stockwatch/config/settings.py

"""Central configuration for the stockwatch monitor."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a truthy/falsy environment flag."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_csv(name: str) -> list[str]:
    """Read a comma-separated environment list."""
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    """Central configuration for the stockwatch monitor."""

    # --- Scraping ---
    REQUEST_DELAY: float = 1.0          # Seconds between requests per adapter
    REQUEST_TIMEOUT: int = 30           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 300.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-AU,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"macOS"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Hydration (headless browser) ---
    HYDRATION_ENABLED: bool = _env_flag("STOCKWATCH_USE_BROWSER")
    HYDRATION_NAV_TIMEOUT: float = 30.0     # page.goto budget
    HYDRATION_WAIT_TIMEOUT: float = 8.0     # settle-poll budget
    HYDRATION_MAX_RETRIES: int = 3          # re-reads while still UNKNOWN
    HYDRATION_RETRY_DELAY: float = 0.4
    HYDRATION_TOTAL_TIMEOUT: float = 60.0   # hard cap per escalation
    HYDRATION_CONCURRENCY: int = 2          # simultaneous browsers
    BROWSER_LOCALE: str = "en-AU"
    BROWSER_TIMEZONE: str = "Australia/Sydney"

    # --- Throttle lock ---
    LOCK_TTL_SECONDS: int = 60
    LOCK_BACKEND: str = os.getenv("LOCK_BACKEND", "").strip().lower()
    REDIS_URL: str = os.getenv("REDIS_URL", "")
    UPSTASH_REDIS_REST_URL: str = os.getenv("UPSTASH_REDIS_REST_URL", "")
    UPSTASH_REDIS_REST_TOKEN: str = os.getenv("UPSTASH_REDIS_REST_TOKEN", "")
    THROTTLE_FAIL_OPEN: bool = _env_flag("THROTTLE_FAIL_OPEN", default=True)

    # --- Orchestration ---
    MAX_CONCURRENCY: int = 4            # Targets scraped in parallel
    DEFAULT_POSTCODE: str = "2000"
    EXCLUDED_PLATFORMS: list[str] = _env_csv("EXCLUDED_PLATFORMS")

    # --- Reporting ---
    STATUS_RECENT_HOURS: int = 24
    STATUS_LIST_LIMIT: int = 10

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = BASE_DIR / "stockwatch" / "config" / "selectors.json"
    DB_PATH: Path = Path(
        os.getenv("STOCKWATCH_DB", str(BASE_DIR / "data" / "stockwatch.db"))
    )
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Retailers (registry; unregistered platforms use genericDom) ---
    GENERIC_PLATFORM: str = "genericDom"
    RETAILER_ADAPTERS: list[dict[str, str]] = [
        {
            "platform": "kmart",
            "label": "Kmart",
            "adapter": "stockwatch.scrapers.kmart_scraper.KmartAdapter",
            "homepage": "https://www.kmart.com.au/",
        },
        {
            "platform": "bigw",
            "label": "BIG W",
            "adapter": "stockwatch.scrapers.bigw_scraper.BigWAdapter",
            "homepage": "https://www.bigw.com.au/",
        },
        {
            "platform": "ebgames",
            "label": "EB Games",
            "adapter": "stockwatch.scrapers.ebgames_scraper.EBGamesAdapter",
            "homepage": "https://www.ebgames.com.au/",
        },
        {
            "platform": "collectiblemadness",
            "label": "Collectible Madness",
            "adapter": (
                "stockwatch.scrapers.collectible_madness_scraper"
                ".CollectibleMadnessAdapter"
            ),
            "homepage": "https://collectiblemadness.com.au/",
        },
        {
            "platform": "genericDom",
            "label": "Generic",
            "adapter": "stockwatch.scrapers.generic_dom_scraper.GenericDomAdapter",
            "homepage": "",
        },
    ]

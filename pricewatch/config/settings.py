# pricewatch/config/settings.py

"""Central configuration for the pricewatch engine."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back on bad values."""
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Read an int from the environment, falling back on bad values."""
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


class Settings:
    """Central configuration for the pricewatch engine."""

    # --- Fetching ---
    REQUEST_DELAY: float = 2.0          # Seconds between page requests
    REQUEST_TIMEOUT: int = _env_int("REQUEST_TIMEOUT", 15)
    MAX_RETRIES: int = 1                # Extra attempts after the first

    # --- Retry / pacing (jittered) ---
    RETRY_BASE_DELAY: float = 2.0
    RETRY_JITTER: float = 1.0
    PACING_BASE_DELAY: float = 3.0      # Between eligible items in a sweep
    PACING_JITTER: float = 2.0

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 300.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
        "robot check",
    ]

    # --- Alerting / trends ---
    MIN_DROP_PERCENT: float = _env_float("MIN_DROP_PERCENT", 2.0)
    TREND_WINDOW: int = 5
    TREND_THRESHOLD: float = 2.0
    HISTORY_KEEP_COUNT: int = 90

    # --- Scheduling ---
    TIMEZONE: str = os.environ.get(
        "PRICEWATCH_TIMEZONE", "Asia/Kolkata"
    )
    SCHEDULE_HOUR: int = 9
    SCHEDULE_MINUTE: int = 0
    WEEKLY_ANCHOR_DAY: int = 6          # datetime.weekday(): Sunday

    # --- Notifications ---
    TELEGRAM_BOT_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_API_BASE: str = "https://api.telegram.org"

    # --- Display ---
    DEFAULT_CURRENCY: str = "INR"
    CURRENCY_SYMBOLS: dict[str, str] = {
        "INR": "₹",
        "USD": "$",
        "EUR": "€",
        "GBP": "£",
        "JPY": "¥",
    }

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9,hi;q=0.8",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = Path(__file__).resolve().parent / "selectors.json"
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    LOG_KEEP_FILES: int = _env_int("PRICEWATCH_LOG_KEEP", 30)
    DB_PATH: Path = Path(
        os.environ.get(
            "PRICEWATCH_DB_PATH", str(DATA_DIR / "pricewatch.db")
        )
    )

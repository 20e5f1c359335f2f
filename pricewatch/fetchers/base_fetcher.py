# pricewatch/fetchers/base_fetcher.py

"""Abstract base class for product-page quote fetchers."""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from pricewatch.config.settings import Settings
from pricewatch.models.tracking import Quote

# Statuses that mean "slow down" rather than "wrong URL"
_THROTTLE_STATUSES = frozenset({403, 429, 503})

# Markers of an anti-bot interstitial instead of a product page
_CHALLENGE_MARKERS: tuple[str, ...] = (
    "challenges.cloudflare.com",
    "cdn-cgi/challenge-platform",
    "just a moment",
    "cf-turnstile",
    "cf_chl_opt",
)

# Product pages are large; only short pages are scanned for CAPTCHA words
_MIN_PRODUCT_PAGE_SIZE = 5000


class QuoteFetchError(Exception):
    """Raised when a product page cannot be fetched or parsed."""


class CircuitBreaker:
    """Stops requests to a source after repeated consecutive failures.

    Once open, the breaker lets a single probe through after
    ``cooldown`` seconds (half-open).  A success closes it again.
    """

    def __init__(self, threshold: int, cooldown: float) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.failures = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def blocks(self) -> bool:
        """True while open and still cooling down."""
        if self.opened_at is None:
            return False
        if time.time() - self.opened_at >= self.cooldown:
            self.opened_at = None
            return False
        return True

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> bool:
        """Count a failure; returns True when this one tripped the breaker."""
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = time.time()
            return True
        return False


class AdaptiveDelay:
    """Doubling per-source delay, capped at ``base * max_multiplier``."""

    def __init__(self, base: float, max_multiplier: int) -> None:
        self.base = base
        self.ceiling = base * max_multiplier
        self.current = base

    def escalate(self) -> float:
        self.current = min(self.current * 2, self.ceiling)
        return self.current

    def reset(self) -> None:
        self.current = self.base


class BaseFetcher(ABC):
    """Fetches product pages for one source and turns them into quotes.

    Requests go out through a browser-impersonating curl_cffi session.
    When that is blocked, a cloudscraper session is tried once.  Only a
    single request is made per call; retrying is the caller's job.
    """

    def __init__(self, source_name: str) -> None:
        self.source_name = source_name
        self.logger = logging.getLogger(f"pricewatch.{source_name}")
        self.settings = Settings()
        self.selectors = self._load_selectors()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self.breaker = CircuitBreaker(
            self.settings.CIRCUIT_BREAKER_THRESHOLD,
            self.settings.CIRCUIT_BREAKER_COOLDOWN,
        )
        self.delay = AdaptiveDelay(
            self.settings.REQUEST_DELAY,
            self.settings.MAX_DELAY_MULTIPLIER,
        )
        self.last_status: int | None = None

    def _load_selectors(self) -> dict[str, list[str]]:
        """Selector lists for this source, keyed by field name."""
        with open(self.settings.SELECTORS_PATH, encoding="utf-8") as f:
            by_source: dict[str, Any] = json.load(f)
        fields: dict[str, list[str]] = by_source.get(self.source_name, {})
        return fields

    # ── Response checks ──────────────────────────────────

    def _block_reason(self, text: str) -> str | None:
        """Why a 200 response is really a block page, if it is one."""
        lower = text.lower()
        for marker in _CHALLENGE_MARKERS:
            if marker in lower:
                return f"challenge page ({marker})"
        if "<body" in lower and len(text) > _MIN_PRODUCT_PAGE_SIZE:
            return None
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                return f"CAPTCHA keyword '{keyword}'"
        return None

    def _note_failure(self) -> None:
        if self.breaker.record_failure():
            self.logger.error(
                "[%s] Circuit breaker opened after %d consecutive failures",
                self.source_name,
                self.breaker.failures,
            )

    def _note_throttled(self) -> None:
        wait = self.delay.escalate()
        self.logger.warning(
            "[%s] Throttled, delay now %.1fs", self.source_name, wait,
        )

    # ── Fetching ─────────────────────────────────────────

    def _request(
        self, url: str, headers: dict[str, str],
    ) -> str | None:
        """One GET through the primary session; the body on success."""
        if self.breaker.blocks():
            return None
        self.last_status = None
        try:
            resp = self.session.get(
                url,
                headers=headers,
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            self.logger.warning(
                "[%s] Request error for %s: %s",
                self.source_name,
                url,
                exc,
                exc_info=True,
            )
            self._note_failure()
            return None

        self.last_status = resp.status_code
        if resp.status_code != 200:
            self.logger.warning(
                "[%s] HTTP %d for %s",
                self.source_name,
                resp.status_code,
                url,
            )
            if resp.status_code in _THROTTLE_STATUSES:
                self._note_throttled()
                time.sleep(self.delay.current)
            self._note_failure()
            return None

        reason = self._block_reason(resp.text)
        if reason is not None:
            self.logger.warning(
                "[%s] Blocked at %s: %s", self.source_name, url, reason,
            )
            self._note_throttled()
            self._note_failure()
            return None

        self.breaker.record_success()
        self.delay.reset()
        return resp.text

    def _request_fallback(
        self, url: str, headers: dict[str, str],
    ) -> str | None:
        """One GET through cloudscraper, which can solve JS challenges."""
        try:
            scraper: Any = cloudscraper.create_scraper()
            resp: Any = scraper.get(
                url, headers=headers, timeout=self.settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            self.logger.error(
                "[%s] cloudscraper fallback failed: %s",
                self.source_name,
                exc,
                exc_info=True,
            )
            return None
        if resp.status_code != 200:
            self.logger.warning(
                "[%s] cloudscraper got HTTP %d",
                self.source_name,
                resp.status_code,
            )
            return None
        return str(resp.text)

    def _load_page(self, url: str) -> BeautifulSoup | None:
        """Parsed product page, or None when every route failed."""
        if self.breaker.blocks():
            self.logger.info(
                "[%s] Circuit open, not requesting %s",
                self.source_name,
                url,
            )
            return None
        headers = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": self._get_homepage(url),
        }
        html = self._request(url, headers)
        if html is None and self.last_status != 404:
            self.logger.info(
                "[%s] Primary session failed, trying cloudscraper",
                self.source_name,
            )
            html = self._request_fallback(url, headers)
        return BeautifulSoup(html, "lxml") if html is not None else None

    # ── Parsing ──────────────────────────────────────────

    def _select_text(self, soup: BeautifulSoup, field: str) -> str:
        """Text of the first selector for ``field`` that has any."""
        for selector in self.selectors.get(field, []):
            node = soup.select_one(selector)
            if node is None:
                continue
            text = node.get_text(strip=True)
            if text:
                return text
        return ""

    @staticmethod
    def parse_price(text: str | None) -> float | None:
        """Numeric value of a display price such as '₹1,299.00'."""
        if not text:
            return None
        match = re.search(r"\d+(?:\.\d+)?", re.sub(r"[,\s]", "", text))
        return float(match.group(0)) if match else None

    @abstractmethod
    def _get_homepage(self, url: str) -> str:
        """Storefront root used as the Referer header."""

    @abstractmethod
    def fetch(self, source_ref: str) -> Quote:
        """Fetch the current quote for a product reference.

        Raises:
            QuoteFetchError: The page could not be fetched or parsed.
        """

# pricewatch/fetchers/amazon_fetcher.py

"""Quote fetcher for Amazon product pages."""

import re
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from pricewatch.fetchers.base_fetcher import BaseFetcher, QuoteFetchError
from pricewatch.models.tracking import Quote

_AMAZON_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^https?://(www\.)?amazon\.(com|co\.uk|de|fr|es|it|co\.jp|in|ca"
        r"|com\.au|com\.br|com\.mx|nl|sg|ae|sa|se|pl|eg|tr)/.*$",
        re.IGNORECASE,
    ),
    re.compile(r"^https?://(www\.)?amzn\.(to|in|com)/.*$", re.IGNORECASE),
)

_ASIN_RE = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})", re.IGNORECASE)

# Amazon tracking params that vary per session
_TRACKING_PARAMS: frozenset[str] = frozenset({
    "ref", "ref_", "dib", "dib_tag", "qid", "sr", "spc",
    "sp_csd", "xpid", "aref", "sp_cr", "psc", "tag",
    "keywords", "pd_rd_i", "pd_rd_r", "pd_rd_w",
    "pd_rd_wg", "pf_rd_i", "pf_rd_m", "pf_rd_p",
    "pf_rd_r", "pf_rd_s", "pf_rd_t", "th", "linkcode",
})

_SYMBOL_CURRENCIES: tuple[tuple[str, str], ...] = (
    ("₹", "INR"),
    ("$", "USD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("AED", "AED"),
)

_DOMAIN_CURRENCIES: dict[str, str] = {
    "amazon.in": "INR",
    "amazon.com": "USD",
    "amazon.co.uk": "GBP",
    "amazon.de": "EUR",
    "amazon.fr": "EUR",
    "amazon.es": "EUR",
    "amazon.it": "EUR",
    "amazon.nl": "EUR",
    "amazon.co.jp": "JPY",
    "amazon.ae": "AED",
}


class InvalidProductUrlError(ValueError):
    """Raised for URLs that are not Amazon product links."""


def is_amazon_url(url: str | None) -> bool:
    """True if ``url`` looks like an Amazon product or short link."""
    if not url:
        return False
    candidate = url.strip()
    return any(p.match(candidate) for p in _AMAZON_URL_PATTERNS)


def extract_asin(url: str) -> str | None:
    """Pull the 10-character ASIN out of a product URL."""
    match = _ASIN_RE.search(url)
    return match.group(1).upper() if match else None


def normalize_product_url(raw_url: str) -> str:
    """Strip tracking/session query params to get a stable product URL."""
    parsed = urlparse(raw_url.strip())

    # Strip path-based tracking (e.g. /ref=sr_1_243)
    path = re.sub(r"/ref=[^/]*", "", parsed.path)

    params = parse_qs(parsed.query, keep_blank_values=True)
    cleaned = {
        k: v for k, v in params.items()
        if k.lower() not in _TRACKING_PARAMS
    }
    new_query = urlencode(cleaned, doseq=True) if cleaned else ""
    return urlunparse((
        parsed.scheme,
        parsed.netloc.lower(),
        path,
        parsed.params,
        new_query,
        "",  # drop fragment
    ))


def validate_product_url(url: str | None) -> str:
    """Validate and normalise a user-supplied Amazon URL.

    Raises:
        InvalidProductUrlError: The URL is empty or not Amazon.
    """
    if not url or not url.strip():
        raise InvalidProductUrlError("URL is required")
    if not is_amazon_url(url):
        raise InvalidProductUrlError(
            "Invalid Amazon URL. Please provide a valid Amazon product link."
        )
    return normalize_product_url(url)


def detect_currency(price_text: str, url: str = "") -> str:
    """Currency from the price text, falling back to the store domain."""
    for symbol, code in _SYMBOL_CURRENCIES:
        if symbol in price_text:
            return code
    host = urlparse(url).netloc.lower().removeprefix("www.")
    return _DOMAIN_CURRENCIES.get(host, "INR")


class AmazonFetcher(BaseFetcher):
    """Fetches title and price from a single Amazon product page."""

    def __init__(self) -> None:
        super().__init__("amazon")

    def _get_homepage(self, url: str) -> str:
        """Return the storefront root for the product's domain."""
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}/"
        return "https://www.amazon.in/"

    def fetch(self, source_ref: str) -> Quote:
        """Fetch the current quote for an Amazon product URL."""
        self.logger.debug("[amazon] Fetching %s", source_ref)
        soup = self._load_page(source_ref)
        if soup is None:
            if self.last_status == 404:
                raise QuoteFetchError(
                    "Product not found. Please check the URL."
                )
            if self.last_status in (403, 503):
                raise QuoteFetchError(
                    "Amazon is blocking automated requests. "
                    "Please try again later."
                )
            raise QuoteFetchError(
                f"Could not load product page: {source_ref}"
            )

        title = self._select_text(soup, "title")
        if not title:
            raise QuoteFetchError(
                "Could not find product title. "
                "The page structure may have changed."
            )

        price_text = self._select_text(soup, "price")
        price = self.parse_price(price_text)
        if price is None or price <= 0:
            raise QuoteFetchError(
                "Could not find product price. The product may be "
                "unavailable or the page structure changed."
            )

        currency = detect_currency(price_text, source_ref)
        self.logger.info(
            "[amazon] Fetched '%s' at %s %.2f",
            title[:50],
            currency,
            price,
        )
        return Quote(title=title, price=price, currency=currency)

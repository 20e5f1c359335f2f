# tests/test_amazon_fetcher.py

"""Tests for Amazon URL handling and product-page parsing."""

import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from pricewatch.fetchers.amazon_fetcher import (
    AmazonFetcher,
    InvalidProductUrlError,
    detect_currency,
    extract_asin,
    is_amazon_url,
    normalize_product_url,
    validate_product_url,
)
from pricewatch.fetchers.base_fetcher import QuoteFetchError

FIXTURES_DIR = Path(__file__).parent / "fixtures"
PRODUCT_URL = "https://www.amazon.in/Sony-WH-1000XM5/dp/B09XS7JWHH"


class TestAmazonUrls(unittest.TestCase):
    """URL recognition, normalisation and validation."""

    def test_recognises_marketplaces_and_short_links(self) -> None:
        for url in (
            PRODUCT_URL,
            "https://amazon.com/dp/B000000001",
            "http://www.amazon.co.uk/gp/product/B000000001",
            "https://amzn.to/3abcdef",
        ):
            with self.subTest(url=url):
                self.assertTrue(is_amazon_url(url))

    def test_rejects_other_sites(self) -> None:
        for url in (
            None,
            "",
            "https://www.flipkart.com/item/p/123",
            "https://amazon.in.evil.example/dp/B000000001",
            "ftp://www.amazon.in/dp/B000000001",
        ):
            with self.subTest(url=url):
                self.assertFalse(is_amazon_url(url))

    def test_extract_asin(self) -> None:
        self.assertEqual(extract_asin(PRODUCT_URL), "B09XS7JWHH")
        self.assertEqual(
            extract_asin("https://www.amazon.in/gp/product/b09xs7jwhh"),
            "B09XS7JWHH",
        )
        self.assertIsNone(extract_asin("https://www.amazon.in/s?k=tv"))

    def test_normalize_strips_tracking(self) -> None:
        raw = (
            "https://WWW.Amazon.in/Sony-WH-1000XM5/dp/B09XS7JWHH"
            "/ref=sr_1_3?crid=1&keywords=sony&qid=123&sr=8-3&tag=aff-21"
            "#customerReviews"
        )
        result = normalize_product_url(raw)
        self.assertTrue(result.startswith("https://www.amazon.in/"))
        self.assertIn("/dp/B09XS7JWHH", result)
        for fragment in ("ref=", "qid=", "sr=", "keywords=", "tag=", "#"):
            with self.subTest(fragment=fragment):
                self.assertNotIn(fragment, result)
        self.assertIn("crid=1", result)

    def test_validate_returns_normalised_url(self) -> None:
        self.assertEqual(
            validate_product_url(f"  {PRODUCT_URL}?th=1  "), PRODUCT_URL,
        )

    def test_validate_rejects_empty_and_foreign(self) -> None:
        with self.assertRaisesRegex(InvalidProductUrlError, "required"):
            validate_product_url("   ")
        with self.assertRaisesRegex(InvalidProductUrlError, "Amazon"):
            validate_product_url("https://example.com/dp/B000000001")


class TestDetectCurrency(unittest.TestCase):

    def test_symbol_in_price_text_wins(self) -> None:
        self.assertEqual(detect_currency("$19.99", PRODUCT_URL), "USD")
        self.assertEqual(detect_currency("₹1,299"), "INR")
        self.assertEqual(detect_currency("£5.00"), "GBP")

    def test_domain_fallback(self) -> None:
        self.assertEqual(
            detect_currency("1,299", "https://www.amazon.de/dp/X"), "EUR",
        )
        self.assertEqual(detect_currency("1,299", "https://x.test/"), "INR")


@patch("pricewatch.fetchers.base_fetcher.cloudscraper")
@patch("pricewatch.fetchers.base_fetcher.curl_requests.Session")
class TestAmazonFetcher(unittest.TestCase):
    """AmazonFetcher.fetch against mocked HTTP responses."""

    def _fetcher_with(
        self, mock_session_cls: MagicMock, status: int, fixture: str = "",
    ) -> tuple[AmazonFetcher, MagicMock]:
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        resp = MagicMock()
        resp.status_code = status
        resp.text = (
            (FIXTURES_DIR / fixture).read_text(encoding="utf-8")
            if fixture
            else ""
        )
        mock_session.get.return_value = resp
        return AmazonFetcher(), mock_session

    def test_fetch_parses_title_and_price(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, _ = self._fetcher_with(
            mock_session_cls, 200, "amazon_product.html",
        )
        quote = fetcher.fetch(PRODUCT_URL)
        self.assertEqual(
            quote.title,
            "Sony WH-1000XM5 Wireless Noise Cancelling Headphones, Black",
        )
        self.assertEqual(quote.price, 26990.0)
        self.assertEqual(quote.currency, "INR")
        self.assertTrue(quote.has_usable_price)

    def test_referer_is_store_homepage(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, session = self._fetcher_with(
            mock_session_cls, 200, "amazon_product.html",
        )
        fetcher.fetch(PRODUCT_URL)
        headers = session.get.call_args.kwargs["headers"]
        self.assertEqual(headers["Referer"], "https://www.amazon.in/")

    def test_missing_price_raises(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, _ = self._fetcher_with(
            mock_session_cls, 200, "amazon_product_unavailable.html",
        )
        with self.assertRaisesRegex(QuoteFetchError, "price"):
            fetcher.fetch(PRODUCT_URL)

    def test_missing_title_raises(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, session = self._fetcher_with(mock_session_cls, 200)
        session.get.return_value.text = (
            "<html><body><span class='a-price'>"
            "<span class='a-offscreen'>₹10</span></span></body></html>"
        )
        with self.assertRaisesRegex(QuoteFetchError, "title"):
            fetcher.fetch(PRODUCT_URL)

    def test_404_raises_not_found(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, _ = self._fetcher_with(mock_session_cls, 404)
        with self.assertRaisesRegex(QuoteFetchError, "not found"):
            fetcher.fetch(PRODUCT_URL)
        mock_cs.create_scraper.assert_not_called()

    def test_blocked_raises_after_fallback(
        self, mock_session_cls: MagicMock, mock_cs: MagicMock,
    ) -> None:
        fetcher, _ = self._fetcher_with(mock_session_cls, 503)
        mock_cs.create_scraper.return_value.get.return_value.status_code = (
            503
        )
        with self.assertRaisesRegex(QuoteFetchError, "blocking"):
            fetcher.fetch(PRODUCT_URL)
        mock_cs.create_scraper.assert_called_once()


if __name__ == "__main__":
    unittest.main()

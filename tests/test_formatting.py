# tests/test_formatting.py

"""Tests for display helpers and alert message rendering."""

import unittest
from datetime import datetime, timedelta, timezone

from pricewatch.models.tracking import PriceHistoryEntry, TrackedProduct
from pricewatch.pricing.alert_engine import decide
from pricewatch.pricing.formatting import (
    build_alert_message,
    currency_symbol,
    format_money,
    format_price,
    format_trend_message,
    truncate_title,
)
from pricewatch.pricing.price_change import summarize_history


class TestCurrencyAndPrice(unittest.TestCase):
    """Symbol lookup and number formatting."""

    def test_known_symbols(self) -> None:
        self.assertEqual(currency_symbol("INR"), "₹")
        self.assertEqual(currency_symbol("usd"), "$")
        self.assertEqual(currency_symbol("EUR"), "€")

    def test_unknown_code_is_echoed(self) -> None:
        self.assertEqual(currency_symbol("AED"), "AED")

    def test_missing_currency_uses_default(self) -> None:
        self.assertEqual(currency_symbol(None), "₹")

    def test_format_price_groups_and_trims(self) -> None:
        self.assertEqual(format_price(1299.0), "1,299")
        self.assertEqual(format_price(1299.5), "1,299.5")
        self.assertEqual(format_price(100.0), "100")
        self.assertEqual(format_price(None), "N/A")

    def test_format_money(self) -> None:
        self.assertEqual(format_money(2499.99, "INR"), "₹2,499.99")
        self.assertEqual(format_money(None, "INR"), "N/A")


class TestTruncateTitle(unittest.TestCase):

    def test_short_title_unchanged(self) -> None:
        self.assertEqual(truncate_title("Kettle"), "Kettle")

    def test_long_title_ellipsised(self) -> None:
        result = truncate_title("x" * 80, max_length=20)
        self.assertEqual(len(result), 20)
        self.assertTrue(result.endswith("..."))

    def test_empty_title(self) -> None:
        self.assertEqual(truncate_title(""), "Unknown Product")


class TestAlertMessage(unittest.TestCase):
    """HTML alert rendering."""

    def _product(self, target: float | None = None) -> TrackedProduct:
        return TrackedProduct(
            id=1,
            user_id=1,
            source_url="https://www.amazon.in/dp/B0TEST0001?a=1&b=2",
            title="Tea & Coffee <Maker>",
            current_price=1000.0,
            target_price=target,
        )

    def test_normal_drop_message(self) -> None:
        product = self._product()
        decision = decide(product, 1000.0, 900.0, 2.0)
        message = build_alert_message(product, 1000.0, 900.0, decision)
        self.assertIn("Price Drop Alert", message)
        self.assertIn("₹1,000", message)
        self.assertIn("₹900", message)
        self.assertIn("10.0% off", message)
        self.assertNotIn("Your Target", message)

    def test_target_message_headline(self) -> None:
        product = self._product(target=950.0)
        decision = decide(product, 1000.0, 900.0, 2.0)
        message = build_alert_message(product, 1000.0, 900.0, decision)
        self.assertIn("Target Price Reached", message)
        self.assertIn("Your Target", message)

    def test_html_is_escaped(self) -> None:
        product = self._product()
        decision = decide(product, 1000.0, 900.0, 2.0)
        message = build_alert_message(product, 1000.0, 900.0, decision)
        self.assertIn("Tea &amp; Coffee &lt;Maker&gt;", message)
        self.assertIn("?a=1&amp;b=2", message)


class TestTrendMessage(unittest.TestCase):

    def test_none_summary_is_empty(self) -> None:
        self.assertEqual(format_trend_message(None, "INR"), "")

    def test_summary_lines(self) -> None:
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        history = [
            PriceHistoryEntry(1, price, start + timedelta(days=day))
            for price, day in ((1000.0, 0), (950.0, 3), (900.0, 6))
        ]
        summary = summarize_history(
            history, 900.0, start + timedelta(days=6),
        )
        text = format_trend_message(summary, "INR")
        self.assertIn("7 days", text)
        self.assertIn("Low: ₹900 | High: ₹1,000", text)
        self.assertIn("lowest price", text)


if __name__ == "__main__":
    unittest.main()

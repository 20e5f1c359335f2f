# pricewatch/pricing/formatting.py

"""Display helpers shared by notifications and the CLI."""

import html

from pricewatch.config.settings import Settings
from pricewatch.models.tracking import TrackedProduct
from pricewatch.pricing.alert_engine import AlertDecision, AlertPriority
from pricewatch.pricing.price_change import HistorySummary, PeriodStats


def currency_symbol(currency: str | None) -> str:
    """Map an ISO code to its symbol, or echo the code."""
    code = (currency or Settings.DEFAULT_CURRENCY).upper()
    return Settings.CURRENCY_SYMBOLS.get(code, code)


def format_price(price: float | None) -> str:
    """Group thousands, show at most two decimals."""
    if price is None:
        return "N/A"
    text = f"{price:,.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def format_money(price: float | None, currency: str | None) -> str:
    """Price with its currency symbol, or ``N/A``."""
    if price is None:
        return "N/A"
    return f"{currency_symbol(currency)}{format_price(price)}"


def truncate_title(title: str | None, max_length: int = 50) -> str:
    """Shorten a product title for display."""
    if not title:
        return "Unknown Product"
    if len(title) <= max_length:
        return title
    return title[: max_length - 3] + "..."


def build_alert_message(
    product: TrackedProduct,
    old_price: float,
    new_price: float,
    decision: AlertDecision,
) -> str:
    """Render the Telegram (HTML parse mode) price-drop message."""
    symbol = html.escape(currency_symbol(product.currency))
    savings = old_price - new_price
    headline = (
        "🎯 <b>Target Price Reached!</b>"
        if decision.priority is AlertPriority.HIGH
        else "🎉 <b>Price Drop Alert!</b>"
    )
    lines = [
        headline,
        "",
        f"📦 <b>{html.escape(truncate_title(product.title, 100))}</b>",
        "",
        f"💰 <b>Was:</b> <s>{symbol}{format_price(old_price)}</s>",
        f"💰 <b>Now:</b> <b>{symbol}{format_price(new_price)}</b>",
        f"💵 <b>You Save:</b> {symbol}{format_price(savings)}"
        f" ({decision.change.formatted_percent} off)",
    ]
    if product.target_price is not None:
        lines.append(
            f"🎯 <b>Your Target:</b> "
            f"{symbol}{format_price(product.target_price)}"
        )
    lines += [
        "",
        f"📌 <i>{html.escape(decision.reason)}</i>",
        "",
        f'🛒 <a href="{html.escape(product.source_url, quote=True)}">'
        "Buy Now on Amazon</a>",
    ]
    return "\n".join(lines)


def _period_line(stats: PeriodStats, symbol: str) -> str:
    arrow = (
        "📉"
        if stats.change.is_dropped
        else "📈" if stats.change.is_increased else "➡️"
    )
    return (
        f"• {stats.days} days: {arrow} {stats.change.formatted_percent}"
        f" ({symbol}{format_price(stats.start_price)} → "
        f"{symbol}{format_price(stats.current_price)})"
    )


def format_trend_message(
    summary: HistorySummary | None, currency: str | None,
) -> str:
    """Render a history summary as a short multi-line block."""
    if summary is None:
        return ""
    symbol = currency_symbol(currency)
    lines = ["📊 Price Trend:"]
    for stats in (summary.last_7_days, summary.last_14_days):
        if stats is not None:
            lines.append(_period_line(stats, symbol))
    lines.append(
        f"• Low: {symbol}{format_price(summary.all_time_low)}"
        f" | High: {symbol}{format_price(summary.all_time_high)}"
    )
    if summary.is_at_low:
        lines.append("🏷️ This is the lowest price we've seen!")
    return "\n".join(lines)

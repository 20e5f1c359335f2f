# pricewatch/pricing/alert_engine.py

"""Decide whether a price observation warrants a notification."""

from dataclasses import dataclass
from enum import Enum

from pricewatch.config.settings import Settings
from pricewatch.models.tracking import TrackedProduct
from pricewatch.pricing.price_change import PriceChange, compute_change


class AlertPriority(str, Enum):
    """Urgency attached to a firing alert."""

    HIGH = "high"
    NORMAL = "normal"


@dataclass(frozen=True)
class AlertDecision:
    """Result of running the alert rules."""

    should_alert: bool
    reason: str
    change: PriceChange
    priority: AlertPriority | None = None


def decide(
    product: TrackedProduct,
    old_price: float | None,
    new_price: float,
    min_drop_percent: float | None = None,
) -> AlertDecision:
    """Apply the alert rules in order; the first match wins.

    1. No drop: no alert.
    2. Already alerted at or below ``new_price``: no alert.
    3. Target price reached: high-priority alert.
    4. Meaningful drop: normal-priority alert.
    5. Otherwise the drop is too small.
    """
    threshold = (
        Settings.MIN_DROP_PERCENT
        if min_drop_percent is None
        else min_drop_percent
    )
    change = compute_change(old_price, new_price, threshold)

    if not change.is_dropped:
        return AlertDecision(False, "Price did not drop", change)

    if (
        product.last_alert_price is not None
        and new_price >= product.last_alert_price
    ):
        return AlertDecision(
            False,
            f"Already alerted at {product.last_alert_price:g}",
            change,
        )

    if (
        product.target_price is not None
        and new_price <= product.target_price
    ):
        return AlertDecision(
            True,
            f"Target price {product.target_price:g} reached!",
            change,
            AlertPriority.HIGH,
        )

    if change.is_meaningful:
        return AlertDecision(
            True,
            f"Price dropped {change.formatted_percent}",
            change,
            AlertPriority.NORMAL,
        )

    return AlertDecision(
        False,
        f"Drop ({change.formatted_percent}) below threshold "
        f"({threshold:g}%)",
        change,
    )

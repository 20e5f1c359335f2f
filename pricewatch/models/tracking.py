# pricewatch/models/tracking.py

"""Users, tracked products and price observations."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A subscriber who owns tracked products.

    ``check_interval`` and ``max_products`` are explicit per-user
    overrides; ``None`` means "use the plan default".
    """

    id: int
    telegram_id: int
    plan: str = "FREE"
    username: str = ""
    check_interval: str | None = None
    max_products: int | None = None
    is_active: bool = True


@dataclass
class TrackedProduct:
    """A product a user is watching."""

    id: int
    user_id: int
    source_url: str
    title: str = ""
    current_price: float | None = None
    target_price: float | None = None
    currency: str = "INR"
    last_checked_at: datetime | None = None
    last_alert_price: float | None = None
    last_alerted_at: datetime | None = None
    is_active: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class PriceHistoryEntry:
    """One immutable price observation."""

    product_id: int
    price: float
    checked_at: datetime


@dataclass
class Quote:
    """Result of fetching a product page."""

    title: str
    price: float | None
    currency: str = "INR"

    @property
    def has_usable_price(self) -> bool:
        """A quote is only usable with a positive price."""
        return self.price is not None and self.price > 0


@dataclass
class DueCandidate:
    """A tracked product joined with its owner for a sweep."""

    user: User
    product: TrackedProduct

# pricewatch/services/tracking_service.py

"""User-facing tracking operations: add, remove, target, report, plan."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pricewatch.fetchers.amazon_fetcher import validate_product_url
from pricewatch.fetchers.base_fetcher import BaseFetcher, QuoteFetchError
from pricewatch.fetchers.retry import RetryPolicy, fetch_with_retry_detailed
from pricewatch.models.plan import (
    PLAN_TABLE,
    Plan,
    check_quota,
    plan_for,
)
from pricewatch.models.tracking import TrackedProduct, User
from pricewatch.pricing.price_change import (
    HistorySummary,
    Trend,
    classify_trend,
    summarize_history,
)
from pricewatch.services.sweep_coordinator import ProductNotFoundError
from pricewatch.storage.tracker_db import TrackerDB

logger = logging.getLogger("pricewatch.tracking")

MAX_TARGET_PRICE = 1_000_000


class QuotaExceededError(Exception):
    """Raised when a user is already at their product cap."""

    def __init__(self, current: int, limit: int, suggestion: str) -> None:
        super().__init__(
            f"Product limit reached ({current}/{limit}). {suggestion}"
        )
        self.current = current
        self.limit = limit
        self.suggestion = suggestion


class DuplicateProductError(Exception):
    """Raised when the user already tracks the same product URL."""


class InvalidTargetPriceError(ValueError):
    """Raised for target prices that are missing or out of range."""


@dataclass
class PriceReport:
    """Trend and history statistics for one product."""

    product: TrackedProduct
    trend: Trend
    summary: HistorySummary | None


@dataclass
class PlanChange:
    """Result of moving a user to another plan."""

    user: User
    previous_plan: Plan
    plan: Plan
    deactivated: list[TrackedProduct] = field(
        default_factory=lambda: list[TrackedProduct]()
    )


def validate_target_price(price: float | str | None) -> float:
    """Parse and range-check a target price, rounded to cents."""
    if price is None or price == "":
        raise InvalidTargetPriceError("Price is required")
    try:
        value = float(price)
    except (TypeError, ValueError) as exc:
        raise InvalidTargetPriceError("Invalid price format") from exc
    if math.isnan(value) or value <= 0:
        raise InvalidTargetPriceError("Price must be greater than 0")
    if value > MAX_TARGET_PRICE:
        raise InvalidTargetPriceError("Price seems unreasonably high")
    return round(value, 2)


class TrackingService:
    """Manages what each user tracks and which plan they are on."""

    def __init__(
        self,
        store: TrackerDB,
        fetcher: BaseFetcher,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._policy = retry_policy or RetryPolicy()

    def _require_user(self, telegram_id: int) -> User:
        user = self._store.get_user_by_telegram_id(telegram_id)
        if user is None:
            raise ProductNotFoundError(
                f"No user registered for chat {telegram_id}"
            )
        return user

    def _require_owned_product(
        self, user: User, product_id: int,
    ) -> TrackedProduct:
        product = self._store.find_product(product_id)
        if (
            product is None
            or not product.is_active
            or product.user_id != user.id
        ):
            raise ProductNotFoundError(f"Product {product_id} not found")
        return product

    async def add_product(
        self,
        telegram_id: int,
        url: str,
        target_price: float | str | None = None,
        username: str = "",
    ) -> TrackedProduct:
        """Start tracking a product for a user.

        The initial quote is fetched before anything is stored, so
        a product is never created without a price.

        Raises:
            InvalidProductUrlError: Not an Amazon product link.
            QuotaExceededError: The user is at their product cap.
            DuplicateProductError: The URL is already tracked.
            InvalidTargetPriceError: ``target_price`` is out of range.
            QuoteFetchError: The product page could not be priced.
        """
        source_url = validate_product_url(url)
        target = (
            validate_target_price(target_price)
            if target_price is not None
            else None
        )
        user = await asyncio.to_thread(
            self._store.upsert_user, telegram_id, username,
        )

        current = await asyncio.to_thread(
            self._store.count_active_products, user.id,
        )
        quota = check_quota(user, current)
        if not quota.can_track:
            suggestion = (
                f"Upgrade to PRO to track up to "
                f"{PLAN_TABLE[Plan.PRO].max_products} products!"
                if plan_for(user).plan is Plan.FREE
                else "Delete a product to add a new one."
            )
            raise QuotaExceededError(quota.current, quota.limit, suggestion)

        existing = await asyncio.to_thread(
            self._store.find_active_product_by_url, user.id, source_url,
        )
        if existing is not None:
            raise DuplicateProductError(
                f"You are already tracking this product (#{existing.id})"
            )

        quote, last_error = await fetch_with_retry_detailed(
            self._fetcher, source_url, self._policy,
        )
        if quote is None or quote.price is None:
            raise QuoteFetchError(
                str(last_error) if last_error else "No price found"
            )

        now = datetime.now(timezone.utc)
        product = await asyncio.to_thread(
            self._store.create_product,
            user.id,
            source_url,
            quote.title,
            quote.price,
            quote.currency,
            target,
            now,
        )
        await asyncio.to_thread(
            self._store.append_history, product.id, quote.price, now,
        )
        return product

    def remove_product(self, telegram_id: int, product_id: int) -> bool:
        """Soft-delete one of the user's products."""
        user = self._store.get_user_by_telegram_id(telegram_id)
        if user is None:
            return False
        removed = self._store.deactivate_product(product_id, user.id)
        if removed:
            logger.info(
                "User %d stopped tracking product %d",
                telegram_id,
                product_id,
            )
        return removed

    def set_target_price(
        self,
        telegram_id: int,
        product_id: int,
        price: float | str | None,
    ) -> float:
        """Validate and store a target price; returns the stored value."""
        value = validate_target_price(price)
        user = self._require_user(telegram_id)
        product = self._require_owned_product(user, product_id)
        self._store.update_target_price(product.id, user.id, value)
        logger.info("Target for product %d set to %.2f", product.id, value)
        return value

    def list_products(self, telegram_id: int) -> list[TrackedProduct]:
        user = self._store.get_user_by_telegram_id(telegram_id)
        if user is None:
            return []
        return self._store.list_user_products(user.id)

    def price_report(
        self, product_id: int, now: datetime | None = None,
    ) -> PriceReport:
        """Trend label plus history statistics for a product."""
        product = self._store.find_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        history = self._store.get_price_history(product.id)
        current = product.current_price
        if current is None and history:
            current = history[-1].price
        summary = (
            summarize_history(
                history, current, now or datetime.now(timezone.utc),
            )
            if current is not None
            else None
        )
        return PriceReport(
            product=product,
            trend=classify_trend(history),
            summary=summary,
        )

    def change_plan(
        self, telegram_id: int, plan: Plan | str,
    ) -> PlanChange:
        """Move a user to ``plan`` and write that plan's defaults.

        When the new cap is lower than the number of active products,
        the oldest ones are kept and the rest are deactivated.
        """
        target = Plan.parse(plan) if isinstance(plan, str) else plan
        rules = PLAN_TABLE[target]
        user = self._store.upsert_user(telegram_id)
        previous = Plan.parse(user.plan)

        self._store.update_user_plan(
            user.id,
            rules.plan.value,
            rules.interval.value,
            rules.max_products,
        )

        deactivated: list[TrackedProduct] = []
        products = self._store.list_user_products(user.id)
        for product in products[rules.max_products:]:
            if self._store.deactivate_product(product.id, user.id):
                deactivated.append(product)
        if deactivated:
            logger.warning(
                "User %d over %s cap, deactivated %d products",
                telegram_id,
                target.value,
                len(deactivated),
            )

        updated = self._store.get_user(user.id) or user
        return PlanChange(
            user=updated,
            previous_plan=previous,
            plan=target,
            deactivated=deactivated,
        )

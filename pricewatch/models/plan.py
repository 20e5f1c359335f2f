# pricewatch/models/plan.py

"""Subscription plans and the rules they impose on a user."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pricewatch.models.tracking import User

logger = logging.getLogger("pricewatch.plans")


class CheckInterval(str, Enum):
    """How often a user's tracked products are re-priced."""

    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"

    @classmethod
    def parse(cls, value: str | None) -> "CheckInterval":
        """Resolve an identifier, falling back to WEEKLY."""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.WEEKLY


class Plan(str, Enum):
    """Closed set of subscription tiers."""

    FREE = "FREE"
    PRO = "PRO"

    @classmethod
    def parse(cls, value: str | None) -> "Plan":
        """Resolve a plan identifier, defaulting to FREE."""
        if not value:
            return cls.FREE
        try:
            return cls(value.strip().upper())
        except ValueError:
            logger.warning(
                "Unknown plan '%s', defaulting to FREE", value,
            )
            return cls.FREE


@dataclass(frozen=True)
class PlanRules:
    """Field table entry for one plan."""

    plan: Plan
    display_name: str
    interval: CheckInterval
    max_products: int
    monthly_price: int = 0


PLAN_TABLE: dict[Plan, PlanRules] = {
    Plan.FREE: PlanRules(
        plan=Plan.FREE,
        display_name="Free",
        interval=CheckInterval.WEEKLY,
        max_products=1,
    ),
    Plan.PRO: PlanRules(
        plan=Plan.PRO,
        display_name="Pro",
        interval=CheckInterval.DAILY,
        max_products=10,
        monthly_price=99,
    ),
}


@dataclass(frozen=True)
class QuotaCheck:
    """Outcome of a product-count check against a user's cap."""

    can_track: bool
    limit: int
    current: int
    remaining: int


def plan_for(user: "User") -> PlanRules:
    """Return the plan rules for a user (pure lookup)."""
    return PLAN_TABLE[Plan.parse(user.plan)]


def effective_interval(user: "User") -> CheckInterval:
    """Per-user interval override wins over the plan default."""
    if user.check_interval:
        return CheckInterval.parse(user.check_interval)
    return plan_for(user).interval


def effective_max_products(user: "User") -> int:
    """Per-user product cap override wins over the plan default."""
    if user.max_products:
        return user.max_products
    return plan_for(user).max_products


def check_quota(user: "User", current_count: int) -> QuotaCheck:
    """Compare a user's active product count against their cap."""
    limit = effective_max_products(user)
    return QuotaCheck(
        can_track=current_count < limit,
        limit=limit,
        current=current_count,
        remaining=max(0, limit - current_count),
    )


def is_premium(plan: Plan) -> bool:
    """Paid plans have a non-zero monthly price."""
    return PLAN_TABLE[plan].monthly_price > 0

# pricewatch/pricing/price_change.py

"""Pure price-delta and trend computations over price series."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from pricewatch.config.settings import Settings
from pricewatch.models.tracking import PriceHistoryEntry

# Absorbs float rounding noise between scraped prices
_DIRECTION_TOLERANCE = 0.01


class Direction(str, Enum):
    """Direction of a price move from old to new."""

    DOWN = "down"
    UP = "up"
    UNCHANGED = "unchanged"


class TrendLabel(str, Enum):
    """Coarse trend over a window of recent checks."""

    DOWN = "DOWN"
    UP = "UP"
    STABLE = "STABLE"


@dataclass(frozen=True)
class PriceChange:
    """Delta between two prices."""

    absolute_change: float
    percent_change: float
    direction: Direction
    is_meaningful: bool

    @property
    def is_dropped(self) -> bool:
        return self.direction is Direction.DOWN

    @property
    def is_increased(self) -> bool:
        return self.direction is Direction.UP

    @property
    def formatted_percent(self) -> str:
        return f"{abs(self.percent_change):.1f}%"


_NEUTRAL = PriceChange(
    absolute_change=0.0,
    percent_change=0.0,
    direction=Direction.UNCHANGED,
    is_meaningful=False,
)


def compute_change(
    old_price: float | None,
    new_price: float | None,
    min_drop_percent: float | None = None,
) -> PriceChange:
    """Compute delta, percent, direction and meaningfulness.

    Missing or non-positive prices yield a neutral result.
    ``percent_change`` is positive for drops.
    """
    if (
        old_price is None
        or new_price is None
        or old_price <= 0
        or new_price <= 0
    ):
        return _NEUTRAL

    threshold = (
        Settings.MIN_DROP_PERCENT
        if min_drop_percent is None
        else min_drop_percent
    )
    absolute = old_price - new_price
    percent = absolute / old_price * 100

    if absolute > _DIRECTION_TOLERANCE:
        direction = Direction.DOWN
    elif absolute < -_DIRECTION_TOLERANCE:
        direction = Direction.UP
    else:
        direction = Direction.UNCHANGED

    return PriceChange(
        absolute_change=absolute,
        percent_change=percent,
        direction=direction,
        is_meaningful=(
            direction is Direction.DOWN
            and abs(percent) >= threshold
        ),
    )


@dataclass(frozen=True)
class Trend:
    """Trend label for the last few checks."""

    label: TrendLabel
    percent_change: float
    data_points: int
    description: str


def classify_trend(
    history: list[PriceHistoryEntry],
    window: int | None = None,
    threshold: float | None = None,
) -> Trend:
    """Label the trend over the most recent ``window`` entries.

    ``history`` is ordered oldest first.  The oldest and newest
    prices inside the window are compared; a move beyond
    ``threshold`` percent in either direction is a trend.
    """
    size = window or Settings.TREND_WINDOW
    limit = (
        Settings.TREND_THRESHOLD if threshold is None else threshold
    )
    if len(history) < 2:
        return Trend(TrendLabel.STABLE, 0.0, len(history), "Not enough data")

    recent = history[-size:]
    oldest = recent[0].price
    newest = recent[-1].price
    if oldest <= 0 or newest <= 0:
        return Trend(TrendLabel.STABLE, 0.0, len(recent), "Invalid prices")

    percent = (oldest - newest) / oldest * 100
    if percent > limit:
        return Trend(
            TrendLabel.DOWN,
            percent,
            len(recent),
            f"Dropping ({percent:.1f}% in last {len(recent)} checks)",
        )
    if percent < -limit:
        return Trend(
            TrendLabel.UP,
            percent,
            len(recent),
            f"Rising ({abs(percent):.1f}% in last {len(recent)} checks)",
        )
    return Trend(
        TrendLabel.STABLE,
        percent,
        len(recent),
        f"Stable (±{abs(percent):.1f}%)",
    )


@dataclass(frozen=True)
class PeriodStats:
    """Price movement inside a trailing time window."""

    days: int
    start_price: float
    current_price: float
    change: PriceChange
    low: float
    high: float
    average: float
    data_points: int


@dataclass(frozen=True)
class HistorySummary:
    """All-time and trailing-window statistics for one product."""

    count: int
    all_time_low: float
    all_time_high: float
    average: float
    is_at_low: bool
    last_7_days: PeriodStats | None
    last_14_days: PeriodStats | None


def _period_stats(
    history: list[PriceHistoryEntry],
    current_price: float,
    since: datetime,
    days: int,
) -> PeriodStats | None:
    entries = [h for h in history if h.checked_at >= since]
    if not entries:
        return None
    prices = [h.price for h in entries]
    return PeriodStats(
        days=days,
        start_price=entries[0].price,
        current_price=current_price,
        change=compute_change(entries[0].price, current_price),
        low=min(*prices, current_price),
        high=max(*prices, current_price),
        average=round(sum(prices) / len(prices), 2),
        data_points=len(entries),
    )


def summarize_history(
    history: list[PriceHistoryEntry],
    current_price: float,
    now: datetime,
) -> HistorySummary | None:
    """Summarise a product's history (oldest first).

    Returns ``None`` when there is no history.  ``now`` must use the
    same timezone awareness as the entries' ``checked_at``.
    """
    if not history:
        return None
    prices = [h.price for h in history]
    low = min(*prices, current_price)
    return HistorySummary(
        count=len(history),
        all_time_low=low,
        all_time_high=max(*prices, current_price),
        average=round(sum(prices) / len(prices), 2),
        is_at_low=current_price <= low,
        last_7_days=_period_stats(
            history, current_price, now - timedelta(days=7), 7,
        ),
        last_14_days=_period_stats(
            history, current_price, now - timedelta(days=14), 14,
        ),
    )

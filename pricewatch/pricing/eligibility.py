# pricewatch/pricing/eligibility.py

"""Decide whether a tracked product is due for a fresh price check."""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pricewatch.config.settings import Settings
from pricewatch.models.plan import CheckInterval, effective_interval
from pricewatch.models.tracking import TrackedProduct, User

_HOURLY_GAP = timedelta(hours=1)
# 20h rather than 24h so a run that fires a few minutes early
# still picks up yesterday's items.
_DAILY_GAP = timedelta(hours=20)
_WEEKLY_GAP = timedelta(days=6)


@dataclass(frozen=True)
class Eligibility:
    """Verdict plus a human-readable reason."""

    eligible: bool
    reason: str

    def __bool__(self) -> bool:
        return self.eligible


def _as_aware(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_eligible(
    user: User,
    product: TrackedProduct,
    now: datetime,
    anchor_day: int | None = None,
) -> Eligibility:
    """Evaluate eligibility by the owner's effective interval.

    Pure function of its inputs.  The weekly anchor weekday is
    taken from ``now`` as given, so callers should pass ``now``
    in the schedule's timezone.
    """
    interval = effective_interval(user)
    current = _as_aware(now)
    last = (
        _as_aware(product.last_checked_at)
        if product.last_checked_at
        else None
    )
    since = current - last if last else None

    if interval is CheckInterval.HOURLY:
        if since is not None and since < _HOURLY_GAP:
            return Eligibility(False, "Checked less than 1 hour ago")
        return Eligibility(True, "Hourly check eligible")

    if interval is CheckInterval.DAILY:
        if since is not None and since < _DAILY_GAP:
            return Eligibility(False, "Already checked today")
        return Eligibility(True, "Daily check eligible")

    anchor = (
        Settings.WEEKLY_ANCHOR_DAY if anchor_day is None else anchor_day
    )
    anchor_name = calendar.day_name[anchor]
    if now.weekday() != anchor:
        today = calendar.day_name[now.weekday()]
        return Eligibility(
            False,
            f"Weekly check, waiting for {anchor_name} (today is {today})",
        )
    if since is not None and since < _WEEKLY_GAP:
        return Eligibility(False, "Already checked this week")
    return Eligibility(True, f"Weekly check eligible ({anchor_name})")

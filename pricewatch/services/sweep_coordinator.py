# pricewatch/services/sweep_coordinator.py

"""Runs price-check sweeps over every due tracked product."""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from pricewatch.config.settings import Settings
from pricewatch.fetchers.base_fetcher import BaseFetcher, QuoteFetchError
from pricewatch.fetchers.retry import (
    RetryPolicy,
    fetch_with_retry,
    fetch_with_retry_detailed,
)
from pricewatch.models.plan import CheckInterval
from pricewatch.models.run_stats import RunStatistics, SweepState
from pricewatch.models.tracking import (
    DueCandidate,
    TrackedProduct,
    User,
)
from pricewatch.notifiers.telegram_notifier import Notifier
from pricewatch.pricing.alert_engine import AlertDecision, decide
from pricewatch.pricing.eligibility import is_eligible
from pricewatch.pricing.formatting import build_alert_message
from pricewatch.storage.tracker_db import TrackerDB

logger = logging.getLogger("pricewatch.coordinator")


class SweepAlreadyRunningError(RuntimeError):
    """Raised when a sweep is requested while one is in flight."""


class ProductNotFoundError(LookupError):
    """Raised for unknown or deactivated products."""


class ProductNotEligibleError(Exception):
    """Raised when a non-forced check hits an ineligible product."""


@dataclass
class CheckResult:
    """Outcome of checking a single product on demand."""

    product_id: int
    old_price: float | None
    new_price: float
    notified: bool
    decision: AlertDecision


@dataclass
class UserCheckOutcome:
    """One product's line in a check of everything a user tracks."""

    product: TrackedProduct
    result: CheckResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None

    @property
    def hit_target(self) -> bool:
        """Priced at or below the product's target."""
        target = self.product.target_price
        return (
            self.result is not None
            and target is not None
            and self.result.new_price <= target
        )


def _default_clock() -> datetime:
    return datetime.now(ZoneInfo(Settings.TIMEZONE))


class PriceCheckCoordinator:
    """Loads due products, re-prices them and dispatches alerts.

    Items are processed strictly one at a time with a jittered pause
    between fetches.  A failure on one item never stops the sweep.
    """

    def __init__(
        self,
        store: TrackerDB,
        fetcher: BaseFetcher,
        notifier: Notifier,
        retry_policy: RetryPolicy | None = None,
        pacing_base: float | None = None,
        pacing_jitter: float | None = None,
        min_drop_percent: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._notifier = notifier
        self._policy = retry_policy or RetryPolicy()
        self._pacing_base = (
            Settings.PACING_BASE_DELAY if pacing_base is None else pacing_base
        )
        self._pacing_jitter = (
            Settings.PACING_JITTER if pacing_jitter is None else pacing_jitter
        )
        self._min_drop_percent = (
            Settings.MIN_DROP_PERCENT
            if min_drop_percent is None
            else min_drop_percent
        )
        self._clock = clock or _default_clock
        self._state = SweepState.IDLE
        self.last_stats: RunStatistics | None = None

    @property
    def state(self) -> SweepState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is not SweepState.IDLE

    # ── Sweep ────────────────────────────────────────────

    async def run_sweep(
        self, interval: CheckInterval | str | None = None,
    ) -> RunStatistics:
        """Check every eligible product once and return the counters.

        Raises:
            SweepAlreadyRunningError: Another sweep is in flight.
        """
        if self._state is not SweepState.IDLE:
            raise SweepAlreadyRunningError(
                f"A sweep is already running (state={self._state.value})"
            )
        self._state = SweepState.LOADING
        wanted = CheckInterval.parse(interval) if interval else None
        stats = RunStatistics(interval=wanted.value if wanted else None)
        logger.info(
            "Sweep started (interval=%s)",
            stats.interval or "all",
        )
        try:
            try:
                candidates = await asyncio.to_thread(
                    self._store.get_due_candidates, wanted,
                )
            except Exception as exc:
                logger.error(
                    "Sweep aborted: could not load candidates: %s",
                    exc,
                    exc_info=True,
                )
                stats.aborted = True
                stats.abort_reason = str(exc)
                return self._finish(stats)

            self._state = SweepState.PROCESSING
            stats.candidates = len(candidates)
            groups = self._group_by_owner(candidates)
            stats.users = len(groups)

            fetched_any = False
            for owner_candidates in groups.values():
                for candidate in owner_candidates:
                    fetched_any = await self._process_candidate(
                        candidate, stats, fetched_any,
                    )

            self._state = SweepState.SUMMARIZING
            return self._finish(stats)
        finally:
            self._state = SweepState.IDLE

    @staticmethod
    def _group_by_owner(
        candidates: list[DueCandidate],
    ) -> dict[int, list[DueCandidate]]:
        """Bucket candidates per owner, keeping first-seen order."""
        groups: dict[int, list[DueCandidate]] = {}
        for candidate in candidates:
            groups.setdefault(candidate.user.id, []).append(candidate)
        return groups

    async def _process_candidate(
        self,
        candidate: DueCandidate,
        stats: RunStatistics,
        fetched_any: bool,
    ) -> bool:
        """Handle one candidate.  Returns whether a fetch has happened."""
        user, product = candidate.user, candidate.product
        fetched = fetched_any
        try:
            now = self._clock()
            eligibility = is_eligible(user, product, now)
            if not eligibility:
                stats.skipped += 1
                logger.debug(
                    "Skipping product %d: %s",
                    product.id,
                    eligibility.reason,
                )
                return fetched

            if fetched:
                await self._pace()
            fetched = True

            quote = await fetch_with_retry(
                self._fetcher, product.source_url, self._policy,
            )
            if quote is None or quote.price is None:
                stats.errors += 1
                logger.warning(
                    "Could not price product %d (%s)",
                    product.id,
                    product.source_url,
                )
                return fetched

            old_price = product.current_price
            await self._record_quote(product, quote.price, quote.title, now)
            stats.checked += 1

            decision = decide(
                product, old_price, quote.price, self._min_drop_percent,
            )
            if decision.should_alert and old_price is not None:
                stats.dropped += 1
                sent = await self._dispatch_alert(
                    user, product, old_price, quote.price, decision, now,
                )
                if sent:
                    stats.notified += 1
                else:
                    stats.notify_failed += 1
            return fetched
        except Exception as exc:
            stats.errors += 1
            logger.error(
                "Error processing product %d: %s",
                product.id,
                exc,
                exc_info=True,
            )
            return fetched

    async def _pace(self) -> None:
        wait = self._pacing_base + random.uniform(0, self._pacing_jitter)
        logger.debug("Pacing %.1fs before next fetch", wait)
        await asyncio.sleep(wait)

    async def _record_quote(
        self,
        product: TrackedProduct,
        price: float,
        title: str,
        now: datetime,
    ) -> None:
        """Persist a successful quote and append it to history."""
        await asyncio.to_thread(
            self._store.update_price, product.id, price, title, now,
        )
        await asyncio.to_thread(
            self._store.append_history, product.id, price, now,
        )
        if title:
            product.title = title
        logger.info(
            "Product %d priced at %.2f (was %s)",
            product.id,
            price,
            product.current_price,
        )

    async def _dispatch_alert(
        self,
        user: User,
        product: TrackedProduct,
        old_price: float,
        new_price: float,
        decision: AlertDecision,
        now: datetime,
    ) -> bool:
        """Send an alert and remember it.  Returns False on failure."""
        message = build_alert_message(
            product, old_price, new_price, decision,
        )
        try:
            await asyncio.to_thread(
                self._notifier.send, user.telegram_id, message,
            )
        except Exception as exc:
            logger.error(
                "Failed to notify user %d about product %d: %s",
                user.telegram_id,
                product.id,
                exc,
            )
            return False

        try:
            await asyncio.to_thread(
                self._store.update_alert_state, product.id, new_price, now,
            )
        except Exception as exc:
            # Already delivered, so it still counts as notified
            logger.error(
                "Alert sent for product %d but its alert state was not "
                "saved: %s",
                product.id,
                exc,
                exc_info=True,
            )
        logger.info(
            "Alert sent to user %d for product %d: %s",
            user.telegram_id,
            product.id,
            decision.reason,
        )
        return True

    def _finish(self, stats: RunStatistics) -> RunStatistics:
        stats.finished_at = datetime.now(stats.started_at.tzinfo)
        self.last_stats = stats
        if stats.aborted:
            return stats
        logger.info(
            "Sweep finished in %.1fs: %d candidates across %d users, "
            "%d checked, %d skipped, %d dropped, %d notified, "
            "%d notify failures, %d errors",
            stats.duration_seconds,
            stats.candidates,
            stats.users,
            stats.checked,
            stats.skipped,
            stats.dropped,
            stats.notified,
            stats.notify_failed,
            stats.errors,
        )
        return stats

    # ── Manual check ─────────────────────────────────────

    async def check_single(
        self, product_id: int, *, force: bool = True,
    ) -> CheckResult:
        """Re-price one product on demand.

        Raises:
            ProductNotFoundError: Unknown or inactive product/owner.
            ProductNotEligibleError: ``force`` is False and the
                product is not yet due.
            QuoteFetchError: Every fetch attempt failed.
        """
        product = await asyncio.to_thread(
            self._store.find_product, product_id,
        )
        if product is None or not product.is_active:
            raise ProductNotFoundError(f"Product {product_id} not found")
        user = await asyncio.to_thread(self._store.get_user, product.user_id)
        if user is None or not user.is_active:
            raise ProductNotFoundError(
                f"Owner of product {product_id} not found"
            )

        now = self._clock()
        if not force:
            eligibility = is_eligible(user, product, now)
            if not eligibility:
                raise ProductNotEligibleError(eligibility.reason)

        quote, last_error = await fetch_with_retry_detailed(
            self._fetcher, product.source_url, self._policy,
        )
        if quote is None or quote.price is None:
            raise QuoteFetchError(
                str(last_error) if last_error else "No price found"
            )

        old_price = product.current_price
        await self._record_quote(product, quote.price, quote.title, now)
        decision = decide(
            product, old_price, quote.price, self._min_drop_percent,
        )
        notified = False
        if decision.should_alert and old_price is not None:
            notified = await self._dispatch_alert(
                user, product, old_price, quote.price, decision, now,
            )
        return CheckResult(
            product_id=product.id,
            old_price=old_price,
            new_price=quote.price,
            notified=notified,
            decision=decision,
        )

    async def check_user(self, telegram_id: int) -> list[UserCheckOutcome]:
        """Re-price every active product a user tracks, in order.

        Fetches are paced like a sweep.  A failing product is reported
        in its outcome and does not stop the rest.

        Raises:
            ProductNotFoundError: No user is registered for the chat.
        """
        user = await asyncio.to_thread(
            self._store.get_user_by_telegram_id, telegram_id,
        )
        if user is None or not user.is_active:
            raise ProductNotFoundError(
                f"No user registered for chat {telegram_id}"
            )
        products = await asyncio.to_thread(
            self._store.list_user_products, user.id,
        )

        outcomes: list[UserCheckOutcome] = []
        for product in products:
            if outcomes:
                await self._pace()
            try:
                result = await self.check_single(product.id, force=True)
            except Exception as exc:
                logger.warning(
                    "Manual check of product %d failed: %s",
                    product.id,
                    exc,
                )
                outcomes.append(UserCheckOutcome(product, error=str(exc)))
                continue
            outcomes.append(UserCheckOutcome(product, result=result))

        logger.info(
            "Manual check for user %d: %d/%d priced",
            telegram_id,
            sum(1 for o in outcomes if o.ok),
            len(outcomes),
        )
        return outcomes

# pricewatch/fetchers/retry.py

"""Bounded, jittered retry around a single quote fetch."""

import asyncio
import logging
import random
from dataclasses import dataclass

from pricewatch.config.settings import Settings
from pricewatch.fetchers.base_fetcher import BaseFetcher, QuoteFetchError
from pricewatch.models.tracking import Quote

logger = logging.getLogger("pricewatch.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """Max attempts plus a jittered wait between them."""

    max_retries: int = Settings.MAX_RETRIES
    base_delay: float = Settings.RETRY_BASE_DELAY
    jitter: float = Settings.RETRY_JITTER

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def next_delay(self) -> float:
        """Base delay plus a bounded random jitter."""
        return self.base_delay + random.uniform(0, self.jitter)


async def fetch_with_retry_detailed(
    fetcher: BaseFetcher,
    source_ref: str,
    policy: RetryPolicy | None = None,
) -> tuple[Quote | None, Exception | None]:
    """Attempt a fetch up to ``policy.max_attempts`` times.

    Returns the first quote with a usable price, or ``None`` along
    with the last error seen.  Never raises for fetch failures.
    """
    active = policy or RetryPolicy()
    last_error: Exception | None = None

    for attempt in range(active.max_attempts):
        if attempt > 0:
            wait = active.next_delay()
            logger.info(
                "Retry attempt %d for %s in %.1fs",
                attempt,
                source_ref,
                wait,
            )
            await asyncio.sleep(wait)
        try:
            quote: Quote = await asyncio.to_thread(
                fetcher.fetch, source_ref
            )
        except Exception as exc:
            last_error = exc
            logger.warning(
                "Fetch attempt %d/%d failed for %s: %s",
                attempt + 1,
                active.max_attempts,
                source_ref,
                exc,
            )
            continue

        if quote is not None and quote.has_usable_price:
            return quote, None
        last_error = QuoteFetchError("No price found in fetched data")
        logger.warning(
            "Fetch attempt %d/%d for %s returned no usable price",
            attempt + 1,
            active.max_attempts,
            source_ref,
        )

    logger.error(
        "All %d fetch attempts failed for %s",
        active.max_attempts,
        source_ref,
    )
    return None, last_error


async def fetch_with_retry(
    fetcher: BaseFetcher,
    source_ref: str,
    policy: RetryPolicy | None = None,
) -> Quote | None:
    """Fetch with retries; ``None`` means skip this item."""
    quote, _ = await fetch_with_retry_detailed(
        fetcher, source_ref, policy
    )
    return quote

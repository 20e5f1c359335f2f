# pricewatch/cli/runner.py

"""Headless CLI handlers wiring the store, fetcher and notifier together."""

import asyncio
import json
import logging
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from pricewatch.config.settings import Settings
from pricewatch.fetchers.amazon_fetcher import (
    AmazonFetcher,
    InvalidProductUrlError,
)
from pricewatch.fetchers.base_fetcher import QuoteFetchError
from pricewatch.models.plan import PLAN_TABLE, CheckInterval, Plan
from pricewatch.models.run_stats import RunStatistics
from pricewatch.models.tracking import TrackedProduct
from pricewatch.notifiers.telegram_notifier import (
    NotificationError,
    TelegramNotifier,
)
from pricewatch.pricing.formatting import (
    format_money,
    format_trend_message,
    truncate_title,
)
from pricewatch.pricing.price_change import compute_change
from pricewatch.services.scheduler import PriceCheckScheduler
from pricewatch.services.sweep_coordinator import (
    PriceCheckCoordinator,
    ProductNotEligibleError,
    ProductNotFoundError,
    SweepAlreadyRunningError,
)
from pricewatch.services.tracking_service import (
    DuplicateProductError,
    InvalidTargetPriceError,
    QuotaExceededError,
    TrackingService,
)
from pricewatch.storage.tracker_db import TrackerDB

logger = logging.getLogger("pricewatch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_DOMAIN_ERRORS: tuple[type[Exception], ...] = (
    QuoteFetchError,
    NotificationError,
    SweepAlreadyRunningError,
    ProductNotFoundError,
    ProductNotEligibleError,
    QuotaExceededError,
    DuplicateProductError,
    InvalidProductUrlError,
    InvalidTargetPriceError,
)

_SWEEP_CHOICES: dict[str, CheckInterval | None] = {
    "daily": CheckInterval.DAILY,
    "weekly": CheckInterval.WEEKLY,
    "hourly": CheckInterval.HOURLY,
    "all": None,
}


def _fail(exc: Exception) -> int:
    """Report a domain error and return the failure exit code."""
    logger.warning("Command failed: %s", exc)
    _err.print(f"[red]Error: {exc}[/red]")
    return 1


def _build_coordinator(store: TrackerDB) -> PriceCheckCoordinator:
    notifier = TelegramNotifier()
    if not notifier.is_configured:
        _err.print(
            "[yellow]TELEGRAM_BOT_TOKEN not set; alerts will fail "
            "to send.[/yellow]"
        )
    return PriceCheckCoordinator(store, AmazonFetcher(), notifier)


def _print_stats(stats: RunStatistics, output_format: str) -> None:
    """Render sweep counters as a table or JSON on stdout."""
    if output_format == "json":
        json.dump(stats.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
        return

    table = Table(
        title=f"Sweep ({stats.interval or 'all'})",
        title_style="bold cyan",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for key in (
        "candidates", "users", "checked", "skipped",
        "dropped", "notified", "notify_failed", "errors",
    ):
        table.add_row(key, str(getattr(stats, key)))
    table.add_row("duration", f"{stats.duration_seconds:.1f}s")
    Console().print(table)


def _print_products(products: list[TrackedProduct]) -> None:
    table = Table(
        title="Tracked Products",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=6)
    table.add_column("Title", max_width=50)
    table.add_column("Price", justify="right", style="green")
    table.add_column("Target", justify="right", style="yellow")
    table.add_column("Last checked", style="dim")
    table.add_column("URL", overflow="fold", style="dim")
    for p in products:
        table.add_row(
            str(p.id),
            truncate_title(p.title),
            format_money(p.current_price, p.currency),
            format_money(p.target_price, p.currency),
            (
                p.last_checked_at.strftime("%Y-%m-%d %H:%M")
                if p.last_checked_at
                else "—"
            ),
            p.source_url,
        )
    Console().print(table)


async def run_serve() -> int:
    """Run the DAILY/WEEKLY schedules until interrupted."""
    store = TrackerDB()
    coordinator = _build_coordinator(store)
    scheduler = PriceCheckScheduler(coordinator, store)
    scheduler.start()
    _err.print(
        f"[bold]Scheduler running[/bold] [dim]"
        f"({Settings.SCHEDULE_HOUR:02d}:{Settings.SCHEDULE_MINUTE:02d} "
        f"{Settings.TIMEZONE}). Press Ctrl+C to stop[/dim]"
    )
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        store.close()
    return 0


async def run_sweep_once(which: str, output_format: str = "table") -> int:
    """Run one sweep now and print its statistics."""
    store = TrackerDB()
    try:
        coordinator = _build_coordinator(store)
        _err.print(f"[bold]Running {which} sweep...[/bold]")
        stats = await coordinator.run_sweep(_SWEEP_CHOICES[which])
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    if stats.aborted:
        _err.print(f"[red]Sweep aborted: {stats.abort_reason}[/red]")
        return 1
    _print_stats(stats, output_format)
    return 0


async def run_check(product_id: int, force: bool = True) -> int:
    """Re-price one product immediately."""
    store = TrackerDB()
    try:
        coordinator = _build_coordinator(store)
        result = await coordinator.check_single(product_id, force=force)
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    _err.print(
        f"[green]✓ Product {result.product_id}: "
        f"{result.old_price if result.old_price is not None else 'N/A'}"
        f" → {result.new_price}[/green]"
    )
    _err.print(f"[dim]{result.decision.reason}[/dim]")
    if result.decision.should_alert:
        colour = "green" if result.notified else "yellow"
        status = "sent" if result.notified else "not delivered"
        _err.print(f"[{colour}]Alert {status}[/{colour}]")
    return 0


async def run_check_user(telegram_id: int) -> int:
    """Re-price every product a user tracks and print a summary."""
    store = TrackerDB()
    try:
        coordinator = _build_coordinator(store)
        outcomes = await coordinator.check_user(telegram_id)
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    if not outcomes:
        _err.print("[yellow]No tracked products.[/yellow]")
        return 0

    table = Table(title="Price Check", title_style="bold cyan")
    table.add_column("#", style="dim", width=6)
    table.add_column("Title", max_width=40)
    table.add_column("Was", justify="right")
    table.add_column("Now", justify="right", style="green")
    table.add_column("Change")
    for outcome in outcomes:
        product = outcome.product
        result = outcome.result
        if result is None:
            table.add_row(
                str(product.id),
                truncate_title(product.title, 40),
                format_money(product.current_price, product.currency),
                "",
                Text(f"Failed: {outcome.error}", style="red"),
            )
            continue
        table.add_row(
            str(product.id),
            truncate_title(product.title, 40),
            format_money(result.old_price, product.currency),
            format_money(result.new_price, product.currency),
            _change_label(result.old_price, result.new_price),
        )
    Console().print(table)

    hits = sum(1 for o in outcomes if o.hit_target)
    if hits:
        _err.print(f"[green]{hits} product(s) hit your target price![/green]")
    priced = sum(1 for o in outcomes if o.ok)
    return 0 if priced else 1


def _change_label(old: float | None, new: float) -> Text:
    if old is None:
        return Text("New", style="dim")
    change = compute_change(old, new)
    if change.is_dropped:
        return Text(f"-{change.formatted_percent}", style="green")
    if change.is_increased:
        return Text(f"+{change.formatted_percent}", style="red")
    return Text("No change", style="dim")


def run_history(product_id: int) -> int:
    """Print stored history plus trend statistics for a product."""
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        report = service.price_report(product_id)
        history = store.get_price_history(product_id)
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    product = report.product
    table = Table(
        title=truncate_title(product.title, 60),
        title_style="bold cyan",
    )
    table.add_column("Checked at", style="dim")
    table.add_column("Price", justify="right", style="green")
    for entry in history:
        table.add_row(
            entry.checked_at.strftime("%Y-%m-%d %H:%M"),
            format_money(entry.price, product.currency),
        )
    out = Console()
    out.print(table)
    out.print(
        f"Trend: {report.trend.label.value}: {report.trend.description}"
    )
    trend_text = format_trend_message(report.summary, product.currency)
    if trend_text:
        out.print(trend_text)
    return 0


async def run_add(
    telegram_id: int, url: str, target: str | None = None,
) -> int:
    """Start tracking a product for a user."""
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        product = await service.add_product(telegram_id, url, target)
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    _err.print(
        f"[green]✓ Tracking #{product.id}: "
        f"{truncate_title(product.title)} at "
        f"{format_money(product.current_price, product.currency)}"
        f"[/green]"
    )
    return 0


def run_remove(telegram_id: int, product_id: int) -> int:
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        removed = service.remove_product(telegram_id, product_id)
    finally:
        store.close()

    if not removed:
        return _fail(ProductNotFoundError(
            f"Product {product_id} not found"
        ))
    _err.print(f"[green]✓ Stopped tracking #{product_id}[/green]")
    return 0


def run_target(telegram_id: int, product_id: int, price: str) -> int:
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        value = service.set_target_price(telegram_id, product_id, price)
    except _DOMAIN_ERRORS as exc:
        return _fail(exc)
    finally:
        store.close()

    _err.print(
        f"[green]✓ Target for #{product_id} set to {value:,.2f}[/green]"
    )
    return 0


def run_list(telegram_id: int) -> int:
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        products = service.list_products(telegram_id)
    finally:
        store.close()

    if not products:
        _err.print("[yellow]No tracked products.[/yellow]")
        return 0
    _print_products(products)
    return 0


def run_plan(telegram_id: int, plan: str) -> int:
    """Move a user to another plan."""
    store = TrackerDB()
    try:
        service = TrackingService(store, AmazonFetcher())
        change = service.change_plan(telegram_id, Plan.parse(plan))
    finally:
        store.close()

    _err.print(
        f"[green]✓ {PLAN_TABLE[change.previous_plan].display_name} → "
        f"{PLAN_TABLE[change.plan].display_name}[/green]"
    )
    for product in change.deactivated:
        _err.print(
            f"[yellow]Removed #{product.id} "
            f"{truncate_title(product.title, 40)}[/yellow]"
        )
    return 0


def run_cleanup_history(keep: int | None = None) -> int:
    """Trim stored history to the newest N entries per product."""
    store = TrackerDB()
    try:
        deleted = store.cleanup_price_history(keep)
    finally:
        store.close()
    _err.print(f"[green]✓ Removed {deleted:,} history rows[/green]")
    return 0

# main.py

"""Entry point for the pricewatch price-check engine."""

import argparse
import asyncio
import logging
import sys

from pricewatch.config.logging_config import setup_logging
from pricewatch.config.settings import Settings

logger = logging.getLogger("pricewatch.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="pricewatch",
        description="Scheduled Amazon price tracker with Telegram alerts.",
        epilog=f"Database: {Settings.DB_PATH}",
    )
    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument(
        "--serve",
        action="store_true",
        default=False,
        help="Run the DAILY and WEEKLY schedules until interrupted.",
    )
    actions.add_argument(
        "--sweep",
        choices=["daily", "weekly", "hourly", "all"],
        default=None,
        help="Run one sweep now for the given interval.",
    )
    actions.add_argument(
        "--check",
        type=int,
        metavar="PRODUCT_ID",
        default=None,
        help="Re-price one product immediately.",
    )
    actions.add_argument(
        "--check-user",
        type=int,
        metavar="TELEGRAM_ID",
        default=None,
        dest="check_user",
        help="Re-price every product a user tracks.",
    )
    actions.add_argument(
        "--history",
        type=int,
        metavar="PRODUCT_ID",
        default=None,
        help="Show stored price history and trend for a product.",
    )
    actions.add_argument(
        "--add",
        nargs=2,
        metavar=("TELEGRAM_ID", "URL"),
        default=None,
        help="Start tracking an Amazon product for a user.",
    )
    actions.add_argument(
        "--remove",
        nargs=2,
        type=int,
        metavar=("TELEGRAM_ID", "PRODUCT_ID"),
        default=None,
        help="Stop tracking a product.",
    )
    actions.add_argument(
        "--target",
        nargs=3,
        metavar=("TELEGRAM_ID", "PRODUCT_ID", "PRICE"),
        default=None,
        help="Set a target price for a tracked product.",
    )
    actions.add_argument(
        "--list",
        type=int,
        metavar="TELEGRAM_ID",
        default=None,
        dest="list_user",
        help="List a user's tracked products.",
    )
    actions.add_argument(
        "--plan",
        nargs=2,
        metavar=("TELEGRAM_ID", "PLAN"),
        default=None,
        help="Move a user to FREE or PRO.",
    )
    actions.add_argument(
        "--cleanup-history",
        action="store_true",
        default=False,
        dest="cleanup_history",
        help="Trim price history to the newest entries per product.",
    )
    parser.add_argument(
        "--no-force",
        action="store_false",
        dest="force",
        default=True,
        help="With --check: refuse products that are not yet due.",
    )
    parser.add_argument(
        "--target-price",
        metavar="PRICE",
        default=None,
        dest="target_price",
        help="With --add: alert once the price reaches PRICE.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Sweep statistics output format (default: table).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Echo INFO logs to stderr.",
    )
    return parser


def _parse_int(parser: argparse.ArgumentParser, value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        parser.error(f"{name} must be an integer, got {value!r}")
        raise


def _dispatch(
    parser: argparse.ArgumentParser, args: argparse.Namespace,
) -> int:
    """Route parsed arguments to a CLI handler; returns the exit code."""
    from pricewatch.cli import runner

    if args.serve:
        return asyncio.run(runner.run_serve())
    if args.sweep is not None:
        return asyncio.run(
            runner.run_sweep_once(args.sweep, args.output_format)
        )
    if args.check is not None:
        return asyncio.run(runner.run_check(args.check, force=args.force))
    if args.check_user is not None:
        return asyncio.run(runner.run_check_user(args.check_user))
    if args.history is not None:
        return runner.run_history(args.history)
    if args.add is not None:
        telegram_id = _parse_int(parser, args.add[0], "TELEGRAM_ID")
        return asyncio.run(
            runner.run_add(telegram_id, args.add[1], args.target_price)
        )
    if args.remove is not None:
        return runner.run_remove(args.remove[0], args.remove[1])
    if args.target is not None:
        telegram_id = _parse_int(parser, args.target[0], "TELEGRAM_ID")
        product_id = _parse_int(parser, args.target[1], "PRODUCT_ID")
        return runner.run_target(telegram_id, product_id, args.target[2])
    if args.list_user is not None:
        return runner.run_list(args.list_user)
    if args.plan is not None:
        telegram_id = _parse_int(parser, args.plan[0], "TELEGRAM_ID")
        if args.plan[1].upper() not in ("FREE", "PRO"):
            parser.error("PLAN must be FREE or PRO")
        return runner.run_plan(telegram_id, args.plan[1])
    return runner.run_cleanup_history()


def main() -> None:
    """Parse arguments, set up logging and run the chosen command."""
    parser = _build_parser()
    args = parser.parse_args()

    log_file = setup_logging(
        logging.INFO if args.verbose else logging.WARNING
    )
    logger.info("pricewatch starting, log file: %s", log_file)

    try:
        exit_code = _dispatch(parser, args)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        exit_code = 0
    except Exception:
        logger.critical("Fatal error during run", exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

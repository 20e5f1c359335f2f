# pricewatch/config/logging_config.py

"""Per-run logging for pricewatch.

Every launch writes ``logs/run_<YYYYmmdd_HHMMSS>.log`` at DEBUG, so a
sweep's per-item decisions can be read back in order.  Only the newest
``LOG_KEEP_FILES`` run logs are kept; the scheduler runs for weeks and
one-off sweeps are often launched from cron.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from pricewatch.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)
_STDERR_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RUN_LOG_GLOB = "run_*.log"


def _prune_run_logs(logs_dir: Path, keep: int) -> list[Path]:
    """Delete all but the newest ``keep`` run logs; returns the deleted."""
    # Names embed the timestamp, so lexical order is chronological
    run_logs = sorted(logs_dir.glob(_RUN_LOG_GLOB), reverse=True)
    stale = run_logs[keep:]
    for path in stale:
        path.unlink(missing_ok=True)
    return stale


def setup_logging(
    console_level: int = logging.WARNING,
    logs_dir: Path | None = None,
    keep_files: int | None = None,
) -> Path:
    """Attach a run log file and a stderr handler to ``pricewatch``.

    Calling it again in the same process is a no-op apart from
    returning a fresh path, so handlers never stack up.

    Args:
        console_level: Threshold for stderr.  ``--verbose`` passes INFO.
        logs_dir: Directory for run logs (default ``Settings.LOGS_DIR``).
        keep_files: Run logs to retain (default ``Settings.LOG_KEEP_FILES``).

    Returns:
        Path of this run's log file.
    """
    directory = logs_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"run_{datetime.now():%Y%m%d_%H%M%S}.log"

    project_logger = logging.getLogger("pricewatch")
    project_logger.setLevel(logging.DEBUG)
    if project_logger.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))
    project_logger.addHandler(file_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(console_level)
    stderr_handler.setFormatter(
        logging.Formatter(_STDERR_FORMAT, _DATE_FORMAT)
    )
    project_logger.addHandler(stderr_handler)

    keep = Settings.LOG_KEEP_FILES if keep_files is None else keep_files
    pruned = _prune_run_logs(directory, max(keep, 1))
    project_logger.debug(
        "Run log at %s (pruned %d old logs)", log_file, len(pruned),
    )
    return log_file

# pricewatch/models/run_stats.py

"""Per-sweep statistics and sweep lifecycle states."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class SweepState(str, Enum):
    """Lifecycle of a single sweep."""

    IDLE = "IDLE"
    LOADING = "LOADING"
    PROCESSING = "PROCESSING"
    SUMMARIZING = "SUMMARIZING"


@dataclass
class RunStatistics:
    """Counters for one sweep.  Never persisted."""

    interval: str | None = None
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    candidates: int = 0
    users: int = 0
    checked: int = 0
    skipped: int = 0
    dropped: int = 0
    notified: int = 0
    notify_failed: int = 0
    errors: int = 0
    aborted: bool = False
    abort_reason: str = ""

    @property
    def duration_seconds(self) -> float:
        """Wall-clock length of the sweep (0 while still running)."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, object]:
        """Serialise for JSON output."""
        return {
            "interval": self.interval,
            "started_at": self.started_at.isoformat(),
            "finished_at": (
                self.finished_at.isoformat()
                if self.finished_at
                else None
            ),
            "candidates": self.candidates,
            "users": self.users,
            "checked": self.checked,
            "skipped": self.skipped,
            "dropped": self.dropped,
            "notified": self.notified,
            "notify_failed": self.notify_failed,
            "errors": self.errors,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }

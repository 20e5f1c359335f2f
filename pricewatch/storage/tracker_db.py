# pricewatch/storage/tracker_db.py

"""SQLite-backed store for users, tracked products and price history."""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from pricewatch.config.settings import Settings
from pricewatch.models.plan import CheckInterval, effective_interval
from pricewatch.models.tracking import (
    DueCandidate,
    PriceHistoryEntry,
    TrackedProduct,
    User,
)

logger = logging.getLogger("pricewatch.tracker_db")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS users (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    telegram_id    INTEGER NOT NULL UNIQUE,
    username       TEXT    NOT NULL DEFAULT '',
    plan           TEXT    NOT NULL DEFAULT 'FREE',
    check_interval TEXT,
    max_products   INTEGER,
    is_active      INTEGER NOT NULL DEFAULT 1,
    created_at     TEXT    NOT NULL,
    updated_at     TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS tracked_products (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          INTEGER NOT NULL
                     REFERENCES users(id) ON DELETE CASCADE,
    source_url       TEXT    NOT NULL,
    title            TEXT    NOT NULL DEFAULT '',
    current_price    REAL,
    target_price     REAL,
    currency         TEXT    NOT NULL DEFAULT 'INR',
    last_checked_at  TEXT,
    last_alert_price REAL,
    last_alerted_at  TEXT,
    is_active        INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS price_history (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL
               REFERENCES tracked_products(id) ON DELETE CASCADE,
    price      REAL    NOT NULL,
    checked_at TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_products_user_active
    ON tracked_products(user_id, is_active);
CREATE INDEX IF NOT EXISTS idx_history_product_date
    ON price_history(product_id, checked_at);
"""

_USER_COLUMNS = (
    "u.id AS u_id, u.telegram_id AS u_telegram_id, "
    "u.username AS u_username, u.plan AS u_plan, "
    "u.check_interval AS u_check_interval, "
    "u.max_products AS u_max_products, u.is_active AS u_is_active"
)

_PRODUCT_COLUMNS = (
    "p.id, p.user_id, p.source_url, p.title, p.current_price, "
    "p.target_price, p.currency, p.last_checked_at, "
    "p.last_alert_price, p.last_alerted_at, p.is_active, p.created_at"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str:
    """Serialise as UTC so stored strings sort chronologically."""
    moment = value or _utcnow()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row: sqlite3.Row, prefix: str = "") -> User:
    return User(
        id=row[f"{prefix}id"],
        telegram_id=row[f"{prefix}telegram_id"],
        username=row[f"{prefix}username"] or "",
        plan=row[f"{prefix}plan"],
        check_interval=row[f"{prefix}check_interval"],
        max_products=row[f"{prefix}max_products"],
        is_active=bool(row[f"{prefix}is_active"]),
    )


def _row_to_product(row: sqlite3.Row) -> TrackedProduct:
    return TrackedProduct(
        id=row["id"],
        user_id=row["user_id"],
        source_url=row["source_url"],
        title=row["title"] or "",
        current_price=row["current_price"],
        target_price=row["target_price"],
        currency=row["currency"],
        last_checked_at=_parse_ts(row["last_checked_at"]),
        last_alert_price=row["last_alert_price"],
        last_alerted_at=_parse_ts(row["last_alerted_at"]),
        is_active=bool(row["is_active"]),
        created_at=_parse_ts(row["created_at"]),
    )


class TrackerDB:
    """SQLite-backed persistence for the price tracker.

    Every write is a single statement followed by a commit.  Timestamps
    are stored as UTC ISO-8601 strings.
    """

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("TrackerDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Users ────────────────────────────────────────────

    def upsert_user(
        self, telegram_id: int, username: str = "",
    ) -> User:
        """Create the user on first contact, refresh the username after."""
        ts = _to_iso(None)
        self._conn.execute(
            "INSERT INTO users "
            "(telegram_id, username, created_at, updated_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(telegram_id) DO UPDATE SET "
            "username = CASE WHEN excluded.username != '' "
            "           THEN excluded.username ELSE users.username END, "
            "updated_at = excluded.updated_at",
            (telegram_id, username, ts, ts),
        )
        self._conn.commit()
        row = self._conn.execute(
            "SELECT * FROM users WHERE telegram_id = ?",
            (telegram_id,),
        ).fetchone()
        return _row_to_user(row)

    def get_user_by_telegram_id(self, telegram_id: int) -> User | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE telegram_id = ?",
            (telegram_id,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_user(self, user_id: int) -> User | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def update_user_plan(
        self,
        user_id: int,
        plan: str,
        check_interval: str | None,
        max_products: int | None,
    ) -> None:
        """Write a plan together with its interval and product cap."""
        self._conn.execute(
            "UPDATE users SET plan = ?, check_interval = ?, "
            "max_products = ?, updated_at = ? WHERE id = ?",
            (plan, check_interval, max_products, _to_iso(None), user_id),
        )
        self._conn.commit()
        logger.info(
            "User %d moved to plan %s (%s, max %s)",
            user_id,
            plan,
            check_interval,
            max_products,
        )

    # ── Products ─────────────────────────────────────────

    def create_product(
        self,
        user_id: int,
        source_url: str,
        title: str,
        current_price: float | None,
        currency: str = "INR",
        target_price: float | None = None,
        created_at: datetime | None = None,
    ) -> TrackedProduct:
        """Insert a tracked product and return it."""
        ts = _to_iso(created_at)
        cur = self._conn.execute(
            "INSERT INTO tracked_products "
            "(user_id, source_url, title, current_price, target_price, "
            " currency, last_checked_at, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                user_id,
                source_url,
                title,
                current_price,
                target_price,
                currency,
                ts if current_price is not None else None,
                ts,
            ),
        )
        self._conn.commit()
        product_id = int(cur.lastrowid or 0)
        checked = _parse_ts(ts) if current_price is not None else None
        logger.info(
            "User %d now tracking product %d: %s",
            user_id,
            product_id,
            source_url,
        )
        return TrackedProduct(
            id=product_id,
            user_id=user_id,
            source_url=source_url,
            title=title,
            current_price=current_price,
            target_price=target_price,
            currency=currency,
            last_checked_at=checked,
            created_at=_parse_ts(ts),
        )

    def find_product(self, product_id: int) -> TrackedProduct | None:
        """Return a product by id regardless of its active flag."""
        row = self._conn.execute(
            f"SELECT {_PRODUCT_COLUMNS} FROM tracked_products p "
            "WHERE p.id = ?",
            (product_id,),
        ).fetchone()
        return _row_to_product(row) if row else None

    def find_active_product_by_url(
        self, user_id: int, source_url: str,
    ) -> TrackedProduct | None:
        row = self._conn.execute(
            f"SELECT {_PRODUCT_COLUMNS} FROM tracked_products p "
            "WHERE p.user_id = ? AND p.source_url = ? "
            "AND p.is_active = 1",
            (user_id, source_url),
        ).fetchone()
        return _row_to_product(row) if row else None

    def list_user_products(
        self, user_id: int, active_only: bool = True,
    ) -> list[TrackedProduct]:
        """Return a user's products in creation order."""
        sql = (
            f"SELECT {_PRODUCT_COLUMNS} FROM tracked_products p "
            "WHERE p.user_id = ?"
        )
        if active_only:
            sql += " AND p.is_active = 1"
        rows = self._conn.execute(
            sql + " ORDER BY p.id ASC", (user_id,),
        ).fetchall()
        return [_row_to_product(r) for r in rows]

    def count_active_products(self, user_id: int) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM tracked_products "
            "WHERE user_id = ? AND is_active = 1",
            (user_id,),
        ).fetchone()
        return int(row[0])

    def deactivate_product(self, product_id: int, user_id: int) -> bool:
        """Soft-delete a product owned by ``user_id``.

        Returns False when no active product matched.
        """
        cur = self._conn.execute(
            "UPDATE tracked_products SET is_active = 0 "
            "WHERE id = ? AND user_id = ? AND is_active = 1",
            (product_id, user_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def update_target_price(
        self,
        product_id: int,
        user_id: int,
        target_price: float | None,
    ) -> bool:
        cur = self._conn.execute(
            "UPDATE tracked_products SET target_price = ? "
            "WHERE id = ? AND user_id = ? AND is_active = 1",
            (target_price, product_id, user_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    # ── Sweep operations ─────────────────────────────────

    def get_due_candidates(
        self, interval: CheckInterval | str | None = None,
    ) -> list[DueCandidate]:
        """Active products of active users, in creation order.

        When ``interval`` is given only owners whose effective
        interval matches are returned.  The effective interval is
        resolved in Python so that NULL overrides fall back to the
        plan default.
        """
        rows = self._conn.execute(
            f"SELECT {_PRODUCT_COLUMNS}, {_USER_COLUMNS} "
            "FROM tracked_products p "
            "JOIN users u ON u.id = p.user_id "
            "WHERE p.is_active = 1 AND u.is_active = 1 "
            "ORDER BY p.id ASC",
        ).fetchall()

        wanted = (
            CheckInterval.parse(interval) if interval is not None else None
        )
        candidates: list[DueCandidate] = []
        for row in rows:
            user = _row_to_user(row, prefix="u_")
            if wanted is not None and effective_interval(user) != wanted:
                continue
            candidates.append(
                DueCandidate(user=user, product=_row_to_product(row))
            )
        logger.debug(
            "Loaded %d due candidates (interval=%s)",
            len(candidates),
            wanted.value if wanted else "all",
        )
        return candidates

    def update_price(
        self,
        product_id: int,
        price: float,
        title: str | None = None,
        checked_at: datetime | None = None,
    ) -> None:
        """Store a freshly fetched price and stamp ``last_checked_at``."""
        self._conn.execute(
            "UPDATE tracked_products SET current_price = ?, "
            "title = COALESCE(NULLIF(?, ''), title), "
            "last_checked_at = ? WHERE id = ?",
            (price, title or "", _to_iso(checked_at), product_id),
        )
        self._conn.commit()

    def append_history(
        self,
        product_id: int,
        price: float,
        checked_at: datetime | None = None,
    ) -> None:
        self._conn.execute(
            "INSERT INTO price_history (product_id, price, checked_at) "
            "VALUES (?, ?, ?)",
            (product_id, price, _to_iso(checked_at)),
        )
        self._conn.commit()

    def update_alert_state(
        self,
        product_id: int,
        price: float,
        alerted_at: datetime | None = None,
    ) -> None:
        """Remember the price we last alerted at."""
        self._conn.execute(
            "UPDATE tracked_products SET last_alert_price = ?, "
            "last_alerted_at = ? WHERE id = ?",
            (price, _to_iso(alerted_at), product_id),
        )
        self._conn.commit()

    # ── History ──────────────────────────────────────────

    def get_price_history(
        self, product_id: int, limit: int | None = None,
    ) -> list[PriceHistoryEntry]:
        """Return history oldest first, optionally only the newest N."""
        if limit is None:
            rows = self._conn.execute(
                "SELECT product_id, price, checked_at FROM price_history "
                "WHERE product_id = ? ORDER BY checked_at ASC, id ASC",
                (product_id,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM ("
                "  SELECT id, product_id, price, checked_at "
                "  FROM price_history WHERE product_id = ? "
                "  ORDER BY checked_at DESC, id DESC LIMIT ?"
                ") ORDER BY checked_at ASC, id ASC",
                (product_id, limit),
            ).fetchall()
        return [
            PriceHistoryEntry(
                product_id=r["product_id"],
                price=r["price"],
                checked_at=datetime.fromisoformat(r["checked_at"]),
            )
            for r in rows
        ]

    def cleanup_price_history(
        self, keep_count: int | None = None,
    ) -> int:
        """Trim each product's history to its newest ``keep_count`` rows.

        Returns the number of rows deleted.
        """
        keep = keep_count or Settings.HISTORY_KEEP_COUNT
        cur = self._conn.execute(
            "DELETE FROM price_history WHERE id IN ("
            "  SELECT id FROM ("
            "    SELECT id, ROW_NUMBER() OVER ("
            "      PARTITION BY product_id "
            "      ORDER BY checked_at DESC, id DESC"
            "    ) AS rn FROM price_history"
            "  ) WHERE rn > ?"
            ")",
            (keep,),
        )
        self._conn.commit()
        deleted = cur.rowcount
        if deleted:
            logger.info(
                "Trimmed %d price history rows (keeping %d per product)",
                deleted,
                keep,
            )
        return deleted

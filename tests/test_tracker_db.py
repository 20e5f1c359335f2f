# tests/test_tracker_db.py

"""Tests for the SQLite tracker store."""

import dataclasses
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from pricewatch.models.plan import CheckInterval
from pricewatch.storage.tracker_db import TrackerDB

T0 = datetime(2026, 3, 1, 3, 30, tzinfo=timezone.utc)
URL_A = "https://www.amazon.in/dp/B0TESTAAAA"
URL_B = "https://www.amazon.in/dp/B0TESTBBBB"


class TestTrackerDB(unittest.TestCase):
    """CRUD and sweep queries against a temp database."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db = TrackerDB(db_path=Path(self.tmp_dir) / "test.db")

    def tearDown(self) -> None:
        self.db.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    # ── Users ────────────────────────────────────────────

    def test_upsert_user_creates_free_user(self) -> None:
        user = self.db.upsert_user(1001, "asha")
        self.assertEqual(user.telegram_id, 1001)
        self.assertEqual(user.username, "asha")
        self.assertEqual(user.plan, "FREE")
        self.assertIsNone(user.check_interval)
        self.assertIsNone(user.max_products)
        self.assertTrue(user.is_active)

    def test_upsert_user_is_idempotent(self) -> None:
        first = self.db.upsert_user(1001, "asha")
        second = self.db.upsert_user(1001)
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.username, "asha")

    def test_get_user_by_telegram_id_missing(self) -> None:
        self.assertIsNone(self.db.get_user_by_telegram_id(42))

    def test_update_user_plan(self) -> None:
        user = self.db.upsert_user(1001)
        self.db.update_user_plan(user.id, "PRO", "DAILY", 10)
        updated = self.db.get_user(user.id)
        assert updated is not None
        self.assertEqual(updated.plan, "PRO")
        self.assertEqual(updated.check_interval, "DAILY")
        self.assertEqual(updated.max_products, 10)

    # ── Products ─────────────────────────────────────────

    def test_create_and_find_product(self) -> None:
        user = self.db.upsert_user(1001)
        created = self.db.create_product(
            user.id, URL_A, "Kettle", 999.0, "INR", 800.0, T0,
        )
        found = self.db.find_product(created.id)
        assert found is not None
        self.assertEqual(found.title, "Kettle")
        self.assertEqual(found.current_price, 999.0)
        self.assertEqual(found.target_price, 800.0)
        self.assertEqual(found.last_checked_at, T0)
        self.assertEqual(found.created_at, T0)
        self.assertIsNone(found.last_alert_price)

    def test_find_active_product_by_url(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "Kettle", 999.0)
        found = self.db.find_active_product_by_url(user.id, URL_A)
        assert found is not None
        self.assertEqual(found.id, product.id)
        self.assertIsNone(self.db.find_active_product_by_url(user.id, URL_B))

    def test_deactivate_is_soft_and_owner_scoped(self) -> None:
        owner = self.db.upsert_user(1001)
        other = self.db.upsert_user(2002)
        product = self.db.create_product(owner.id, URL_A, "Kettle", 999.0)

        self.assertFalse(self.db.deactivate_product(product.id, other.id))
        self.assertTrue(self.db.deactivate_product(product.id, owner.id))
        self.assertFalse(self.db.deactivate_product(product.id, owner.id))

        row = self.db.find_product(product.id)
        assert row is not None
        self.assertFalse(row.is_active)
        self.assertEqual(self.db.count_active_products(owner.id), 0)
        self.assertIsNone(self.db.find_active_product_by_url(owner.id, URL_A))

    def test_count_and_list_user_products(self) -> None:
        user = self.db.upsert_user(1001)
        a = self.db.create_product(user.id, URL_A, "A", 1.0)
        b = self.db.create_product(user.id, URL_B, "B", 2.0)
        self.db.deactivate_product(a.id, user.id)

        self.assertEqual(self.db.count_active_products(user.id), 1)
        self.assertEqual(
            [p.id for p in self.db.list_user_products(user.id)], [b.id],
        )
        self.assertEqual(
            [p.id for p in self.db.list_user_products(user.id, False)],
            [a.id, b.id],
        )

    def test_update_target_price(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 100.0)
        self.assertTrue(self.db.update_target_price(product.id, user.id, 90.5))
        found = self.db.find_product(product.id)
        assert found is not None
        self.assertEqual(found.target_price, 90.5)

    # ── Sweep operations ─────────────────────────────────

    def test_due_candidates_exclude_inactive(self) -> None:
        active = self.db.upsert_user(1001)
        dormant = self.db.upsert_user(2002)
        self.db.create_product(active.id, URL_A, "A", 1.0)
        gone = self.db.create_product(active.id, URL_B, "B", 1.0)
        self.db.create_product(dormant.id, URL_A, "A", 1.0)
        self.db.deactivate_product(gone.id, active.id)
        self.db._conn.execute(
            "UPDATE users SET is_active = 0 WHERE id = ?", (dormant.id,),
        )
        self.db._conn.commit()

        candidates = self.db.get_due_candidates()
        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].user.telegram_id, 1001)
        self.assertEqual(candidates[0].product.source_url, URL_A)

    def test_due_candidates_filter_by_effective_interval(self) -> None:
        free = self.db.upsert_user(1001)
        pro = self.db.upsert_user(2002)
        self.db.update_user_plan(pro.id, "PRO", None, None)
        self.db.create_product(free.id, URL_A, "A", 1.0)
        self.db.create_product(pro.id, URL_B, "B", 1.0)

        weekly = self.db.get_due_candidates(CheckInterval.WEEKLY)
        daily = self.db.get_due_candidates("daily")

        self.assertEqual([c.user.id for c in weekly], [free.id])
        self.assertEqual([c.user.id for c in daily], [pro.id])
        self.assertEqual(len(self.db.get_due_candidates()), 2)

    def test_due_candidates_in_creation_order(self) -> None:
        user = self.db.upsert_user(1001)
        self.db.update_user_plan(user.id, "PRO", "DAILY", 10)
        ids = [
            self.db.create_product(user.id, f"{URL_A}{i}", str(i), 1.0).id
            for i in range(3)
        ]
        self.assertEqual(
            [c.product.id for c in self.db.get_due_candidates()], ids,
        )

    def test_update_price_sets_last_checked(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "Old", None)
        checked = T0 + timedelta(hours=5)
        self.db.update_price(product.id, 850.0, "New title", checked)

        found = self.db.find_product(product.id)
        assert found is not None
        self.assertEqual(found.current_price, 850.0)
        self.assertEqual(found.title, "New title")
        self.assertEqual(found.last_checked_at, checked)

    def test_update_price_keeps_title_when_blank(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "Kettle", 1.0)
        self.db.update_price(product.id, 2.0, "")
        found = self.db.find_product(product.id)
        assert found is not None
        self.assertEqual(found.title, "Kettle")

    def test_update_alert_state(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 100.0)
        self.db.update_alert_state(product.id, 90.0, T0)
        found = self.db.find_product(product.id)
        assert found is not None
        self.assertEqual(found.last_alert_price, 90.0)
        self.assertEqual(found.last_alerted_at, T0)

    def test_timestamps_stored_as_utc(self) -> None:
        """Zone-aware inputs round-trip as the same instant in UTC."""
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 1.0)
        ist = T0.astimezone(ZoneInfo("Asia/Kolkata"))
        self.db.update_price(product.id, 2.0, "A", ist)
        found = self.db.find_product(product.id)
        assert found is not None and found.last_checked_at is not None
        self.assertEqual(found.last_checked_at, T0)
        self.assertEqual(found.last_checked_at.utcoffset(), timedelta(0))

    # ── History ──────────────────────────────────────────

    def test_history_oldest_first(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 1.0)
        for day, price in ((2, 950.0), (0, 1000.0), (4, 900.0)):
            self.db.append_history(
                product.id, price, T0 + timedelta(days=day),
            )
        history = self.db.get_price_history(product.id)
        self.assertEqual([h.price for h in history], [1000.0, 950.0, 900.0])

    def test_history_entries_are_immutable(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 1.0)
        self.db.append_history(product.id, 950.0, T0)
        entry = self.db.get_price_history(product.id)[0]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            entry.price = 1.0  # type: ignore[misc]
        self.assertEqual(self.db.get_price_history(product.id)[0], entry)

    def test_history_limit_returns_newest(self) -> None:
        user = self.db.upsert_user(1001)
        product = self.db.create_product(user.id, URL_A, "A", 1.0)
        for day in range(6):
            self.db.append_history(
                product.id, 100.0 + day, T0 + timedelta(days=day),
            )
        history = self.db.get_price_history(product.id, limit=2)
        self.assertEqual([h.price for h in history], [104.0, 105.0])

    def test_cleanup_keeps_newest_per_product(self) -> None:
        user = self.db.upsert_user(1001)
        a = self.db.create_product(user.id, URL_A, "A", 1.0)
        b = self.db.create_product(user.id, URL_B, "B", 1.0)
        for day in range(5):
            self.db.append_history(a.id, 10.0 + day, T0 + timedelta(days=day))
        self.db.append_history(b.id, 50.0, T0)

        deleted = self.db.cleanup_price_history(keep_count=3)

        self.assertEqual(deleted, 2)
        self.assertEqual(
            [h.price for h in self.db.get_price_history(a.id)],
            [12.0, 13.0, 14.0],
        )
        self.assertEqual(len(self.db.get_price_history(b.id)), 1)

    def test_cleanup_nothing_to_trim(self) -> None:
        self.assertEqual(self.db.cleanup_price_history(keep_count=90), 0)


if __name__ == "__main__":
    unittest.main()

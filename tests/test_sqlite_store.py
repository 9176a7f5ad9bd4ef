import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from telegram_vanish_bot.domain.errors import StoreError
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestPolicyStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = SqlitePolicyStore(Path(self._tmp.name) / "state.db")

    def tearDown(self):
        self._tmp.cleanup()

    def test_set_and_get_policy(self):
        policy = self.store.set_policy("-1001", "-1001", 3600)
        self.assertEqual(policy.ttl_seconds, 3600)
        self.assertEqual(policy.messages_deleted, 0)
        self.assertIsNone(policy.last_deletion_at)
        self.assertEqual(self.store.get_policy("-1001"), policy)
        self.assertIsNone(self.store.get_policy("-999"))

    def test_upsert_keeps_stats_and_created_at(self):
        first = self.store.set_policy("-1001", "-1001", 3600)
        self.store.increment_stats("-1001", 12)
        second = self.store.set_policy("-1001", "-1001", 60)
        self.assertEqual(second.ttl_seconds, 60)
        self.assertEqual(second.messages_deleted, 12)
        self.assertEqual(second.created_at, first.created_at)
        self.assertEqual(len(self.store.list_active_policies()), 1)

    def test_invalid_ttl_rejected(self):
        for bad in (0, -5, True, "60"):
            with self.assertRaises(ValueError):
                self.store.set_policy("-1001", "-1001", bad)
        self.assertEqual(self.store.list_active_policies(), [])

    def test_ttl_above_one_year_rejected(self):
        with self.assertRaisesRegex(ValueError, "at most"):
            self.store.set_policy("-1001", "-1001", 365 * 86400 + 1)
        self.assertEqual(self.store.set_policy("-1001", "-1001", 365 * 86400).ttl_seconds, 365 * 86400)

    def test_list_filters_by_guild(self):
        self.store.set_policy("-1", "g1", 60)
        self.store.set_policy("-2", "g2", 60)
        self.store.set_policy("-3", "g1", 60)
        self.assertEqual(len(self.store.list_active_policies()), 3)
        self.assertEqual([p.channel_id for p in self.store.list_active_policies("g1")], ["-1", "-3"])

    def test_remove_policy(self):
        self.store.set_policy("-1001", "-1001", 60)
        self.assertTrue(self.store.remove_policy("-1001"))
        self.assertFalse(self.store.remove_policy("-1001"))
        self.assertIsNone(self.store.get_policy("-1001"))

    def test_increment_is_cumulative(self):
        self.store.set_policy("-1001", "-1001", 60)
        self.store.increment_stats("-1001", 100)
        update = self.store.increment_stats("-1001", 50)
        self.assertEqual(update.messages_deleted, 150)
        self.assertIsNotNone(update.last_deletion_at)
        self.assertEqual(self.store.get_policy("-1001").messages_deleted, 150)

    def test_increment_unknown_channel_returns_none(self):
        self.assertIsNone(self.store.increment_stats("-404", 3))

    def test_increment_rejects_negative(self):
        self.store.set_policy("-1001", "-1001", 60)
        with self.assertRaises(ValueError):
            self.store.increment_stats("-1001", -1)

    def test_unusable_path_raises_store_error(self):
        blocker = Path(self._tmp.name) / "blocker"
        blocker.write_text("x")
        with self.assertRaises(StoreError):
            SqlitePolicyStore(blocker / "state.db")

    def test_directory_as_db_raises_store_error(self):
        folder = Path(self._tmp.name) / "folder.db"
        folder.mkdir()
        with self.assertRaises(StoreError):
            SqlitePolicyStore(folder)


class TestMessageJournal(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = SqlitePolicyStore(Path(self._tmp.name) / "state.db")
        for i in range(1, 8):
            self.store.record_message("-1001", i, T0 + timedelta(minutes=i))
        self.store.record_message("-2002", 1, T0)

    def tearDown(self):
        self._tmp.cleanup()

    def test_pages_newest_first(self):
        first = self.store.list_messages_before("-1001", None, 3)
        self.assertEqual([m.id for m in first], ["7", "6", "5"])
        second = self.store.list_messages_before("-1001", int(first[-1].id), 3)
        self.assertEqual([m.id for m in second], ["4", "3", "2"])
        third = self.store.list_messages_before("-1001", 2, 3)
        self.assertEqual([m.id for m in third], ["1"])
        self.assertEqual(first[0].created_at, T0 + timedelta(minutes=7))

    def test_pinned_flag_is_sticky_on_rerecord(self):
        self.store.record_message("-1001", 3, T0, pinned=True)
        self.store.record_message("-1001", 3, T0, pinned=False)
        page = self.store.list_messages_before("-1001", 4, 1)
        self.assertTrue(page[0].pinned)
        self.assertTrue(self.store.mark_pinned("-1001", 3, pinned=False))
        self.assertFalse(self.store.list_messages_before("-1001", 4, 1)[0].pinned)
        self.assertFalse(self.store.mark_pinned("-1001", 99))

    def test_message_times_and_forget(self):
        times = self.store.get_message_times("-1001", ["1", "2", "99"])
        self.assertEqual(set(times), {1, 2})
        self.assertEqual(self.store.forget_messages("-1001", [1, 2]), 2)
        self.assertEqual(self.store.journal_size("-1001"), 5)
        self.assertEqual(self.store.journal_size(), 6)
        self.assertEqual(self.store.get_message_times("-1001", []), {})

    def test_remove_policy_clears_journal(self):
        self.store.set_policy("-1001", "-1001", 60)
        self.store.remove_policy("-1001")
        self.assertEqual(self.store.journal_size("-1001"), 0)
        self.assertEqual(self.store.journal_size("-2002"), 1)


class TestSweepLease(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "state.db"
        self.store = SqlitePolicyStore(self.db_path)
        self.other = SqlitePolicyStore(self.db_path)

    def tearDown(self):
        self._tmp.cleanup()

    def test_second_owner_is_refused_until_release(self):
        self.assertTrue(self.store.acquire_sweep_lease("a", 600))
        self.assertFalse(self.other.acquire_sweep_lease("b", 600))
        self.assertFalse(self.other.release_sweep_lease("b"))
        self.assertTrue(self.store.release_sweep_lease("a"))
        self.assertTrue(self.other.acquire_sweep_lease("b", 600))

    def test_holder_can_renew(self):
        self.assertTrue(self.store.acquire_sweep_lease("a", 600))
        self.assertTrue(self.store.acquire_sweep_lease("a", 600))
        self.assertFalse(self.other.acquire_sweep_lease("b", 600))

    def test_expired_lease_can_be_taken_over(self):
        self.assertTrue(self.store.acquire_sweep_lease("a", 600))
        past = (datetime.now(timezone.utc) - timedelta(seconds=5)).isoformat()
        conn = sqlite3.connect(str(self.db_path))
        with conn:
            conn.execute("UPDATE sweep_lease SET expires_at = ?", (past,))
        conn.close()
        self.assertTrue(self.other.acquire_sweep_lease("b", 600))
        self.assertFalse(self.store.release_sweep_lease("a"))
        self.assertFalse(self.store.acquire_sweep_lease("a", 600))


if __name__ == "__main__":
    unittest.main()

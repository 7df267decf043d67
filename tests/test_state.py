import json
import os
import shutil
import sqlite3
import tempfile
import unittest

from comic_sync.core.errors import ConcurrencyError, PersistenceError
from comic_sync.core.models import Progress, RunState
from comic_sync.state.memory_store import InMemoryProgressStore
from comic_sync.state.schema import decode_progress
from comic_sync.state.sqlite_store import SQLiteDedupIndex, SQLiteProgressStore, SQLiteStepJournal
from tests.doubles import make_item


class SQLiteTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmp_dir, "state.sqlite")

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)


class TestSQLiteProgressStore(SQLiteTestCase):
    def setUp(self):
        super().setUp()
        self.store = SQLiteProgressStore(self.db_path)

    def test_missing_source_is_none(self):
        self.assertIsNone(self.store.get("fr"))

    def test_roundtrip(self):
        progress = Progress(
            source_key="fr",
            discovered_ids=(1, 2, 3),
            backfill_cursor=3,
            last_discovery_signature="max:3",
            total_processed=2,
            last_run_id="fr:1",
            last_plan="Backfill(1,2)",
            version=1,
        )
        self.store.put("fr", progress)
        self.assertEqual(self.store.get("fr"), progress)

    def test_compare_and_swap(self):
        self.store.put("fr", Progress(source_key="fr", version=1), expected_version=0)
        self.store.put("fr", Progress(source_key="fr", backfill_cursor=5, version=2), expected_version=1)

        with self.assertRaises(ConcurrencyError):
            self.store.put("fr", Progress(source_key="fr", backfill_cursor=9, version=2), expected_version=1)

        self.assertEqual(self.store.get("fr").backfill_cursor, 5)

    def test_first_write_race_is_detected(self):
        self.store.put("fr", Progress(source_key="fr", version=1), expected_version=0)
        with self.assertRaises(ConcurrencyError):
            self.store.put("fr", Progress(source_key="fr", version=1), expected_version=0)

    def test_legacy_blob_is_migrated_on_read(self):
        legacy = {
            "allComicIds": [1, 2, 3, 5],
            "processedIds": [2, 1],
            "lastScanTime": 1700000000000,
            "zh_cn_total": 4,
        }
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO progress (source_key, version, payload_json, updated_at_utc) VALUES (?, 0, ?, ?)",
                ("zh_cn", json.dumps(legacy), "2023-11-14T22:13:20+00:00"),
            )

        progress = self.store.get("zh_cn")
        self.assertEqual(progress.discovered_ids, (1, 2, 3, 5))
        self.assertEqual(progress.backfill_cursor, 3)
        self.assertFalse(progress.backfill_complete)
        self.assertEqual(progress.last_discovery_signature, "count:4")
        self.assertEqual(progress.total_processed, 2)
        self.assertEqual(progress.last_run_time, "2023-11-14T22:13:20+00:00")
        self.assertEqual(progress.schema_version, 2)


class TestProgressSchema(unittest.TestCase):
    def test_fully_processed_legacy_blob_is_complete(self):
        progress = decode_progress("ru", {"allComicIds": [1, 2], "processedIds": [1, 2], "ru_total": 2})
        self.assertTrue(progress.backfill_complete)
        self.assertEqual(progress.backfill_cursor, 3)

    def test_unknown_version_is_rejected(self):
        with self.assertRaises(ValueError):
            decode_progress("ru", {"schema_version": 99, "source_key": "ru"})

    def test_invalid_blob_is_rejected(self):
        with self.assertRaises(ValueError):
            decode_progress("ru", {"schema_version": 2, "source_key": "ru", "backfill_cursor": 0})

    def test_memory_store_migrates_the_same_way(self):
        store = InMemoryProgressStore()
        store.put_raw("de", {"allComicIds": [4], "processedIds": [], "de_total": 1})
        progress = store.get("de")
        self.assertEqual(progress.backfill_cursor, 1)
        self.assertEqual(progress.discovered_ids, (4,))


class TestSQLiteDedupIndex(SQLiteTestCase):
    def setUp(self):
        super().setUp()
        self.index = SQLiteDedupIndex(os.path.join(self.tmp_dir, "comics.sqlite"), "comics_zh_cn")

    def test_rejects_unsafe_table_names(self):
        with self.assertRaises(ValueError):
            SQLiteDedupIndex(self.db_path, "comics; DROP TABLE x")

    def test_batch_insert_and_lookup(self):
        self.index.insert_batch([make_item(i) for i in range(1, 301)])

        self.assertEqual(self.index.count(), 300)
        self.assertEqual(self.index.contains_any([0, 1, 150, 300, 301]), {1, 150, 300})
        self.assertEqual(self.index.get(7).title, "Comic 7")

    def test_lookup_by_origin_url(self):
        self.index.insert_batch([make_item(1), make_item(2)])

        found = self.index.contains_origins(["https://example.test/2/", "https://example.test/9/", ""])

        self.assertEqual(found, {"https://example.test/2/"})
        self.assertEqual(self.index.contains_origins([]), set())

    def test_upsert_replaces_existing_row(self):
        self.index.insert_one(make_item(1, title="old"))
        self.index.insert_batch([make_item(1, title="new")])

        self.assertEqual(self.index.count(), 1)
        self.assertEqual(self.index.get(1).title, "new")

    def test_write_failure_raises_persistence_error(self):
        with sqlite3.connect(self.index.path) as conn:
            conn.execute("DROP TABLE comics_zh_cn")

        with self.assertRaises(PersistenceError):
            self.index.insert_batch([make_item(1)])
        with self.assertRaises(PersistenceError):
            self.index.insert_one(make_item(1))


class TestSQLiteStepJournal(SQLiteTestCase):
    def setUp(self):
        super().setUp()
        self.journal = SQLiteStepJournal(self.db_path)

    def test_unfinished_run_is_resumed(self):
        first = self.journal.open_run("de", max_attempts=3)
        self.journal.save_step(first.run_id, "discover", {"calls": 1})
        self.journal.set_state(first.run_id, RunState.FAILED, failed_step="plan", error="boom")

        again = self.journal.open_run("de", max_attempts=3)
        self.assertEqual(again.run_id, "de:1")
        self.assertTrue(again.resumed)
        self.assertEqual(again.attempts, 2)
        self.assertEqual(self.journal.load_step("de:1", "discover"), {"calls": 1})

    def test_done_run_starts_a_new_one(self):
        first = self.journal.open_run("de", max_attempts=3)
        self.journal.set_state(first.run_id, RunState.DONE)

        second = self.journal.open_run("de", max_attempts=3)
        self.assertEqual(second.run_id, "de:2")
        self.assertFalse(second.resumed)
        self.assertIsNone(self.journal.load_step("de:2", "discover"))

    def test_exhausted_run_is_abandoned(self):
        self.journal.open_run("de", max_attempts=2)
        self.journal.open_run("de", max_attempts=2)
        fresh = self.journal.open_run("de", max_attempts=2)

        self.assertEqual(fresh.run_id, "de:2")
        self.assertEqual(self.journal.load_run("de:1").state, RunState.ABANDONED)

    def test_first_saved_payload_wins(self):
        run = self.journal.open_run("es", max_attempts=3)
        self.journal.save_step(run.run_id, "execute", {"added": 1})
        self.journal.save_step(run.run_id, "execute", {"added": 2})
        self.assertEqual(self.journal.load_step(run.run_id, "execute"), {"added": 1})

    def test_sources_are_independent(self):
        self.journal.open_run("es", max_attempts=3)
        other = self.journal.open_run("ru", max_attempts=3)
        self.assertEqual(other.run_id, "ru:1")


if __name__ == "__main__":
    unittest.main()

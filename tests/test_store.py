from __future__ import annotations

import unittest

from dashboard.errors import SheetLoadError
from dashboard.models import SalesData
from dashboard.store import LoadStatus, SalesDataStore


class TestSalesDataStore(unittest.TestCase):
    def test_initial_state_is_idle(self) -> None:
        store = SalesDataStore(lambda: SalesData(source="x"))
        self.assertIs(store.snapshot.status, LoadStatus.IDLE)
        self.assertFalse(store.snapshot.ready)

    def test_reload_success(self) -> None:
        data = SalesData(source="google_sheets")
        store = SalesDataStore(lambda: data)

        snapshot = store.reload()

        self.assertIs(snapshot.status, LoadStatus.LOADED)
        self.assertIs(snapshot.data, data)
        self.assertTrue(snapshot.ready)
        self.assertIsNotNone(snapshot.loaded_at)

    def test_reload_failure_carries_no_data(self) -> None:
        def loader() -> SalesData:
            raise SheetLoadError("PipelineDeal", "Failed to fetch PipelineDeal: 404.")

        store = SalesDataStore(loader)
        with self.assertLogs("dashboard.store", level="ERROR"):
            snapshot = store.reload()

        self.assertIs(snapshot.status, LoadStatus.ERRORED)
        self.assertIsNone(snapshot.data)
        self.assertEqual(snapshot.error_type, "SheetLoadError")
        self.assertIn("PipelineDeal", snapshot.error)

    def test_failed_reload_replaces_previous_data(self) -> None:
        results = [SalesData(source="first"), RuntimeError("down")]

        def loader() -> SalesData:
            item = results.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        store = SalesDataStore(loader)
        store.reload()
        with self.assertLogs("dashboard.store", level="ERROR"):
            store.reload()
        self.assertIsNone(store.snapshot.data)

    def test_last_started_load_wins(self) -> None:
        store = SalesDataStore(lambda: SalesData())
        older = store.begin()
        newer = store.begin()

        self.assertTrue(store.complete(newer, SalesData(source="newer")))
        self.assertFalse(store.complete(older, SalesData(source="older")))
        self.assertEqual(store.snapshot.data.source, "newer")

    def test_stale_failure_is_ignored(self) -> None:
        store = SalesDataStore(lambda: SalesData())
        older = store.begin()
        newer = store.begin()
        store.complete(newer, SalesData(source="newer"))

        self.assertFalse(store.fail(older, RuntimeError("late")))
        self.assertIs(store.snapshot.status, LoadStatus.LOADED)

    def test_stale_success_after_newer_failure_is_ignored(self) -> None:
        store = SalesDataStore(lambda: SalesData())
        older = store.begin()
        newer = store.begin()
        store.fail(newer, RuntimeError("down"))

        self.assertFalse(store.complete(older, SalesData(source="older")))
        self.assertIs(store.snapshot.status, LoadStatus.ERRORED)
        self.assertIsNone(store.snapshot.data)

    def test_ensure_loaded_runs_loader_once(self) -> None:
        calls = []

        def loader() -> SalesData:
            calls.append(1)
            return SalesData()

        store = SalesDataStore(loader)
        store.ensure_loaded()
        store.ensure_loaded()
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()

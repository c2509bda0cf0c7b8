import json
import os
import tempfile
import unittest
from datetime import timedelta
from unittest import mock

from backend.store import JsonRecordStore
from fakes import FakeClock
from violations.adapter import DUPLICATE
from violations.errors import RecordStoreError
from violations.event_schema import ViolationRecord


def make_record(plate="MH12KN4567", crimes=("helmet_missing_driver",), timestamp="2025-10-26T14:00:00.000Z"):
    return ViolationRecord(
        vehicle_number=plate,
        vehicle_type="bike",
        violation_type=tuple(crimes),
        timestamp=timestamp,
        image_url="https://example.test/frame.jpg",
        fine_breakdown={c: 1000 for c in crimes},
        total_fine=1000 * len(crimes),
    )


class JsonRecordStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = os.path.join(self.tmp.name, "violations")
        self.fallback = os.path.join(self.tmp.name, "logs", "fallback.json")
        self.clock = FakeClock()
        self.store = JsonRecordStore(self.root, self.fallback, clock=self.clock)

    def test_append_writes_evidence_json(self) -> None:
        vid = self.store.append(make_record())

        self.assertTrue(vid.startswith("V-"))
        with open(os.path.join(self.root, vid, "evidence.json")) as f:
            saved = json.load(f)
        self.assertEqual(saved["id"], vid)
        self.assertEqual(saved["server_created_at"], "2025-10-26T14:00:00.000Z")
        self.assertEqual(saved["violation_type"], ["helmet_missing_driver"])

    def test_repeat_within_window_is_duplicate(self) -> None:
        self.store.append(make_record())
        self.clock.advance(minutes=30)

        self.assertEqual(self.store.append(make_record()), DUPLICATE)
        self.assertEqual(len(self.store), 1)

    def test_disjoint_or_expired_reports_are_written(self) -> None:
        self.store.append(make_record())
        self.clock.advance(minutes=5)
        self.assertNotEqual(self.store.append(make_record(crimes=("triple_riding",))), DUPLICATE)

        self.clock.advance(hours=3)
        self.assertNotEqual(self.store.append(make_record()), DUPLICATE)
        self.assertEqual(len(self.store), 3)

    def test_unknown_plates_are_never_duplicates(self) -> None:
        self.store.append(make_record(plate="UNKNOWN"))
        self.assertNotEqual(self.store.append(make_record(plate="UNKNOWN")), DUPLICATE)

    def test_list_all_newest_first_and_query_recent(self) -> None:
        first = self.store.append(make_record())
        self.clock.advance(minutes=1)
        second = self.store.append(make_record(plate="KA01AB1234"))

        self.assertEqual([r["id"] for r in self.store.list_all()], [second, first])
        self.assertEqual([r["id"] for r in self.store.query_recent("MH12KN4567")], [first])

        self.clock.advance(hours=3)
        self.assertEqual(self.store.query_recent("MH12KN4567"), [])

    def test_import_from_disk_skips_invalid_folders(self) -> None:
        vid = self.store.append(make_record())
        bad = os.path.join(self.root, "V-BROKEN00")
        os.makedirs(bad)
        with open(os.path.join(bad, "evidence.json"), "w") as f:
            json.dump({"vehicle_number": "X", "violation_type": []}, f)

        fresh = JsonRecordStore(self.root, self.fallback, clock=self.clock)
        self.assertEqual(fresh.import_all_from_disk(), 1)
        self.assertEqual(fresh.get(vid)["vehicle_number"], "MH12KN4567")

    def test_disk_failure_falls_back_to_log(self) -> None:
        with mock.patch("backend.store.save_json", side_effect=OSError("read-only")):
            vid = self.store.append(make_record())

        with open(self.fallback) as f:
            logged = json.load(f)
        self.assertEqual(logged[0]["id"], vid)

    def test_total_write_failure_raises(self) -> None:
        with mock.patch("backend.store.save_json", side_effect=OSError("read-only")), \
                mock.patch("backend.store.log_to_fallback", return_value=False):
            with self.assertRaises(RecordStoreError):
                self.store.append(make_record())
        self.assertEqual(len(self.store), 0)

    def test_delete_and_stats(self) -> None:
        vid = self.store.append(make_record(crimes=("helmet_missing_driver", "triple_riding")))
        self.store.append(make_record(plate="KA01AB1234"))

        stats = self.store.stats()
        self.assertEqual(stats["total_violations"], 2)
        self.assertEqual(stats["total_fines"], 3000)
        self.assertEqual(stats["by_type"], {"helmet_missing_driver": 2, "triple_riding": 1})

        self.assertTrue(self.store.delete(vid))
        self.assertFalse(self.store.delete(vid))
        self.assertFalse(os.path.exists(os.path.join(self.root, vid)))

    def test_custom_window(self) -> None:
        store = JsonRecordStore(None, None, window=timedelta(minutes=10), clock=self.clock)
        store.append(make_record())
        self.clock.advance(minutes=11)
        self.assertNotEqual(store.append(make_record()), DUPLICATE)


if __name__ == "__main__":
    unittest.main()

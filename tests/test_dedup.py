import threading
import unittest
from datetime import timedelta

from fakes import T0
from violations.dedup import RecentViolationCache, collapse_duplicates, find_store_duplicate


def _rec(plate, crimes, minutes, **extra):
    rec = {
        "vehicle_number": plate,
        "violation_type": list(crimes),
        "timestamp": (T0 + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z"),
    }
    rec.update(extra)
    return rec


class RecentViolationCacheTests(unittest.TestCase):
    def test_overlap_within_window_is_duplicate(self) -> None:
        cache = RecentViolationCache()
        self.assertFalse(cache.check_and_record("MH12KN4567", ["helmet_missing_driver"], T0))
        self.assertTrue(cache.check_and_record("mh 12 kn 4567", ["helmet_missing_driver"], T0 + timedelta(minutes=10)))

    def test_disjoint_crimes_merge(self) -> None:
        cache = RecentViolationCache()
        cache.check_and_record("MH12KN4567", ["helmet_missing_driver"], T0)
        self.assertFalse(cache.check_and_record("MH12KN4567", ["triple_riding"], T0 + timedelta(minutes=5)))

        entry = cache.get("MH12KN4567")
        self.assertEqual(entry.crime_types, {"helmet_missing_driver", "triple_riding"})
        # merge keeps the original timestamp
        self.assertEqual(entry.last_seen, T0)

        self.assertTrue(cache.check_and_record("MH12KN4567", ["triple_riding"], T0 + timedelta(minutes=20)))

    def test_expired_entry_is_replaced(self) -> None:
        cache = RecentViolationCache()
        cache.check_and_record("MH12KN4567", ["helmet_missing_driver"], T0)
        later = T0 + timedelta(hours=2)
        self.assertFalse(cache.check_and_record("MH12KN4567", ["helmet_missing_driver"], later))
        self.assertEqual(cache.get("MH12KN4567").last_seen, later)

    def test_unknown_and_empty_plates_never_dedup(self) -> None:
        cache = RecentViolationCache()
        for plate in ("UNKNOWN", "unknown", "", None):
            self.assertFalse(cache.check_and_record(plate, ["triple_riding"], T0))
            self.assertFalse(cache.check_and_record(plate, ["triple_riding"], T0))
        self.assertEqual(len(cache), 0)

    def test_concurrent_reports_record_once(self) -> None:
        cache = RecentViolationCache()
        results = []
        barrier = threading.Barrier(8)

        def report():
            barrier.wait()
            results.append(cache.check_and_record("KA01AB1234", ["signal_jump"], T0))

        threads = [threading.Thread(target=report) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(False), 1)

    def test_clear(self) -> None:
        cache = RecentViolationCache()
        cache.check_and_record("MH12KN4567", ["helmet_missing_driver"], T0)
        cache.clear()
        self.assertIsNone(cache.get("MH12KN4567"))


class StoreDuplicateTests(unittest.TestCase):
    def test_overlap_inside_window(self) -> None:
        existing = [_rec("MH12KN4567", ["helmet_missing_driver"], 0)]
        hit = find_store_duplicate(existing, "MH12KN4567", ["helmet_missing_driver"], T0 + timedelta(minutes=30))
        self.assertIs(hit, existing[0])

    def test_old_or_disjoint_records_are_not_duplicates(self) -> None:
        existing = [
            _rec("MH12KN4567", ["helmet_missing_driver"], -180),
            _rec("MH12KN4567", ["triple_riding"], 0),
        ]
        self.assertIsNone(find_store_duplicate(existing, "MH12KN4567", ["helmet_missing_driver"], T0))

    def test_server_time_wins_over_client_time(self) -> None:
        rec = _rec("MH12KN4567", ["wrong_side"], -300, server_created_at="2025-10-26T13:50:00Z")
        self.assertIs(find_store_duplicate([rec], "MH12KN4567", ["wrong_side"], T0), rec)

    def test_unparseable_time_is_treated_as_old(self) -> None:
        rec = {"vehicle_number": "MH12KN4567", "violation_type": ["wrong_side"], "timestamp": "yesterday"}
        self.assertIsNone(find_store_duplicate([rec], "MH12KN4567", ["wrong_side"], T0))

    def test_unknown_plate(self) -> None:
        existing = [_rec("UNKNOWN", ["triple_riding"], 0)]
        self.assertIsNone(find_store_duplicate(existing, "UNKNOWN", ["triple_riding"], T0))


class CollapseDuplicatesTests(unittest.TestCase):
    def test_dashboard_view(self) -> None:
        newest_first = [
            _rec("MH12KN4567", ["helmet_missing_driver"], 60),
            _rec("MH 12 KN 4567", ["helmet_missing_driver", "triple_riding"], 30),
            _rec("MH12KN4567", ["triple_riding"], 20),
            _rec("UNKNOWN", ["wrong_side"], 15),
            _rec("UNKNOWN", ["wrong_side"], 10),
            _rec("KA01AB1234", [], 5),
            _rec("MH12KN4567", ["helmet_missing_driver"], -300),
        ]

        kept = collapse_duplicates(newest_first, timedelta(hours=2))

        self.assertEqual(kept, [newest_first[0], newest_first[2], newest_first[3], newest_first[4], newest_first[6]])


if __name__ == "__main__":
    unittest.main()

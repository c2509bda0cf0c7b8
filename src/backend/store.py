"""
store.py
Record store behind the backend API (and used directly by standalone live runs).

Records live in memory and are mirrored to disk, one folder per violation:
    output/violations/V-12AB34CD/evidence.json

append() performs the authoritative duplicate check over every stored record
(same plate, inside the window, any shared crime type) before writing.
"""

import logging
import os
import shutil
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from violations.adapter import DUPLICATE, record_to_payload
from violations.dedup import DEDUP_WINDOW, find_store_duplicate, record_time
from violations.errors import RecordStoreError
from violations.event_schema import (
    ViolationRecord,
    current_iso_timestamp,
    generate_violation_id,
    is_unknown_plate,
    utc_now,
    validate_violation_record,
)

from .utils_backend import load_json, log_to_fallback, sanitize_filename, save_json

logger = logging.getLogger(__name__)

EVIDENCE_FILE = "evidence.json"


def _sort_key(rec: Dict[str, Any]) -> datetime:
    when = record_time(rec)
    return when or datetime.min.replace(tzinfo=utc_now().tzinfo)


class JsonRecordStore:
    def __init__(
        self,
        root: Optional[str] = "output/violations",
        fallback_log: Optional[str] = "output/logs/fallback.json",
        window: timedelta = DEDUP_WINDOW,
        clock: Callable[[], datetime] = utc_now
    ):
        self.root = os.path.abspath(root) if root else None
        self.fallback_log = fallback_log
        self.window = window
        self._clock = clock
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------
    # RecordStore interface
    # ------------------------------------------------------------

    def append(self, record: ViolationRecord) -> str:
        payload = record_to_payload(record)

        with self._lock:
            now = self._clock()

            if not is_unknown_plate(record.vehicle_number):
                same_plate = [
                    r for r in self._records.values()
                    if r.get("vehicle_number") == record.vehicle_number
                ]
                existing = find_store_duplicate(
                    same_plate, record.vehicle_number, record.violation_type, now, self.window
                )
                if existing is not None:
                    logger.info(
                        "⚠️ DEDUPLICATION: %s skipped (matches %s from %s)",
                        record.vehicle_number, existing.get("id"), existing.get("server_created_at"),
                    )
                    return DUPLICATE

            violation_id = generate_violation_id()
            while violation_id in self._records:
                violation_id = generate_violation_id()

            stored = dict(payload)
            stored["id"] = violation_id
            stored["server_created_at"] = current_iso_timestamp(now)
            self._records[violation_id] = stored

        if not self._persist(stored):
            with self._lock:
                self._records.pop(violation_id, None)
            raise RecordStoreError(f"could not persist violation for {record.vehicle_number}")

        logger.info("✅ Violation saved: %s | %s", violation_id, record.vehicle_number)
        return violation_id

    def query_recent(self, plate: str) -> List[Dict[str, Any]]:
        """Records for this exact plate written inside the dedup window, newest first."""
        cutoff = self._clock() - self.window
        with self._lock:
            matches = [
                dict(r) for r in self._records.values()
                if r.get("vehicle_number") == plate
                and (record_time(r) or cutoff - timedelta(seconds=1)) >= cutoff
            ]
        matches.sort(key=_sort_key, reverse=True)
        return matches

    def list_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [dict(r) for r in self._records.values()]
        records.sort(key=_sort_key, reverse=True)
        return records

    # ------------------------------------------------------------
    # Extras used by the API
    # ------------------------------------------------------------

    def get(self, violation_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rec = self._records.get(violation_id)
            return dict(rec) if rec is not None else None

    def delete(self, violation_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(violation_id, None)
        if removed is None:
            return False
        if self.root:
            shutil.rmtree(os.path.join(self.root, sanitize_filename(violation_id)), ignore_errors=True)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def import_all_from_disk(self) -> int:
        """
        Walk through violation folders and load them into memory.
        Returns how many were imported.
        """
        if not self.root or not os.path.isdir(self.root):
            logger.info("%s does not exist yet.", self.root)
            return 0

        count = 0
        for item in sorted(os.listdir(self.root)):
            full_path = os.path.join(self.root, item)
            if not os.path.isdir(full_path):
                continue

            record = load_json(os.path.join(full_path, EVIDENCE_FILE))
            if not isinstance(record, dict) or not validate_violation_record(record):
                logger.warning("[!] Skipping invalid violation folder %s", full_path)
                continue

            record.setdefault("id", item)
            record.setdefault("server_created_at", record.get("timestamp"))
            with self._lock:
                self._records[record["id"]] = record
            count += 1

        return count

    def stats(self) -> Dict[str, Any]:
        records = self.list_all()

        by_type: Dict[str, int] = {}
        by_vehicle_type: Dict[str, int] = {}
        for rec in records:
            for crime in rec.get("violation_type") or []:
                by_type[crime] = by_type.get(crime, 0) + 1
            vtype = rec.get("vehicle_type") or "unknown"
            by_vehicle_type[vtype] = by_vehicle_type.get(vtype, 0) + 1

        return {
            "total_violations": len(records),
            "total_fines": sum(int(r.get("total_fine") or 0) for r in records),
            "unregistered": sum(1 for r in records if not r.get("owner_name")),
            "by_type": by_type,
            "by_vehicle_type": by_vehicle_type,
        }

    # ------------------------------------------------------------

    def _persist(self, stored: Dict[str, Any]) -> bool:
        if not self.root:
            return True

        path = os.path.join(self.root, stored["id"], EVIDENCE_FILE)
        try:
            save_json(stored, path)
            return True
        except OSError as e:
            logger.error("❌ Error writing %s: %s", path, e)

        if self.fallback_log:
            return log_to_fallback(stored, self.fallback_log)
        return False

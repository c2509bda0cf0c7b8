"""
dedup.py
Duplicate-incident rules shared by the live cache and the record store.

An "incident" is one plate committing one or more crime types. A new report is
a repeat of an earlier one when:
- same plate (normalized for the live cache, exact for the store)
- within the dedup window (2 hours by default)
- ANY crime type overlaps

UNKNOWN / empty plates are never deduplicated.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .event_schema import (
    is_unknown_plate,
    normalize_plate,
    parse_iso_timestamp,
)

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=2)


def crimes_overlap(a: Iterable[str], b: Iterable[str]) -> bool:
    return not set(a).isdisjoint(b)


def record_time(record: Mapping[str, Any]) -> Optional[datetime]:
    """Server write time if present, else the client occurrence time."""
    return (
        parse_iso_timestamp(record.get("server_created_at"))
        or parse_iso_timestamp(record.get("timestamp"))
    )


# ============================================================
# Live (per-session) cache
# ============================================================

@dataclass
class CacheEntry:
    last_seen: datetime
    crime_types: Set[str]


class RecentViolationCache:
    """
    Per-session memory of recently recorded plates.

    check_and_record() is the only mutator and runs under a lock, so two
    near-simultaneous reports for one plate cannot both decide "novel".
    """

    def __init__(self, window: timedelta = DEDUP_WINDOW):
        self.window = window
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def check_and_record(self, plate: Optional[str], crime_types: Iterable[str], now: datetime) -> bool:
        """
        Returns True when the report is a duplicate and must be skipped.

        Novel reports update the cache as a side effect:
        - no entry / expired entry -> replaced with (now, crime_types)
        - live entry, disjoint crimes -> crimes merged in, last_seen kept
        """
        if is_unknown_plate(plate):
            return False

        key = normalize_plate(plate)
        if not key:
            return False

        new_types = set(crime_types)

        with self._lock:
            existing = self._entries.get(key)

            if existing is None or now - existing.last_seen >= self.window:
                self._entries[key] = CacheEntry(last_seen=now, crime_types=new_types)
                return False

            if crimes_overlap(existing.crime_types, new_types):
                logger.info("🚫 Deduplication: skipping %s (%s already recorded)",
                            plate, ", ".join(sorted(existing.crime_types & new_types)))
                return True

            existing.crime_types |= new_types
            return False

    def get(self, plate: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(normalize_plate(plate))
            if entry is None:
                return None
            return CacheEntry(last_seen=entry.last_seen, crime_types=set(entry.crime_types))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================
# Store-side check (authority of record)
# ============================================================

def find_store_duplicate(
    existing_records: Iterable[Mapping[str, Any]],
    plate: Optional[str],
    crime_types: Iterable[str],
    now: datetime,
    window: timedelta = DEDUP_WINDOW
) -> Optional[Mapping[str, Any]]:
    """
    Return the stored record that makes this report a repeat, or None.

    existing_records should already be filtered to the exact plate; records
    without a usable timestamp are treated as old.
    """
    if is_unknown_plate(plate):
        return None

    new_types = list(crime_types)
    cutoff = now - window

    for rec in existing_records:
        if rec.get("vehicle_number") != plate:
            continue

        when = record_time(rec)
        if when is None or when < cutoff:
            continue

        if crimes_overlap(rec.get("violation_type") or [], new_types):
            return rec

    return None


# ============================================================
# Dashboard view
# ============================================================

def collapse_duplicates(
    records_newest_first: Iterable[Mapping[str, Any]],
    window: timedelta = DEDUP_WINDOW
) -> List[Mapping[str, Any]]:
    """
    Cleanup pass for listings:
    - drop records with no crime types (old "0 fine" garbage)
    - always keep UNKNOWN / empty plates
    - drop a record when an already-kept one has the same normalized plate,
      lies within the window (either direction) and shares a crime type
    """
    kept: List[Mapping[str, Any]] = []

    for rec in records_newest_first:
        crimes = rec.get("violation_type") or []
        if not crimes:
            continue

        plate = rec.get("vehicle_number")
        if is_unknown_plate(plate):
            kept.append(rec)
            continue

        key = normalize_plate(plate)
        when = parse_iso_timestamp(rec.get("timestamp"))

        duplicate = False
        for other in kept:
            if normalize_plate(other.get("vehicle_number")) != key:
                continue
            other_when = parse_iso_timestamp(other.get("timestamp"))
            if when is None or other_when is None:
                continue
            if abs(other_when - when) > window:
                continue
            if crimes_overlap(other.get("violation_type") or [], crimes):
                duplicate = True
                break

        if not duplicate:
            kept.append(rec)

    return kept

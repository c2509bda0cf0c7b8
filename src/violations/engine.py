"""
engine.py
Turns live violation reports into fine-annotated records, once per incident.

Per candidate:
    1. ignore non-detections, drop malformed reports
    2. local dedup against the per-session cache (fast path)
    3. novel -> evidence URL, owner lookup, fines, build record
    4. append to the record store (remote dedup is the authority)
    5. only a genuine write updates the UI and notifies the owner

One engine belongs to one live session; its cache dies with the session.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Mapping, Optional, Protocol, Set

from .adapter import DUPLICATE, RecordStore
from .dedup import DEDUP_WINDOW, RecentViolationCache
from .errors import MalformedCandidateError, RecordStoreError
from .event_schema import (
    UNKNOWN_PLATE,
    OwnerDetails,
    ViolationCandidate,
    ViolationRecord,
    build_violation_record,
    utc_now,
)
from .fines import compute_fines
from .notify import EmailNotifier
from .registry import lookup_vehicle

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    NOT_DETECTED = "not_detected"
    MALFORMED = "malformed"
    DUPLICATE_LOCAL = "duplicate_local"
    DUPLICATE_REMOTE = "duplicate_remote"
    STORE_FAILED = "store_failed"
    CANCELLED = "cancelled"
    RECORDED = "recorded"


@dataclass(frozen=True)
class EngineResult:
    outcome: Outcome
    record: Optional[ViolationRecord] = None
    record_id: Optional[str] = None


class EvidenceSource(Protocol):
    async def url(self) -> str:
        ...


class ViolationEngine:
    def __init__(
        self,
        store: RecordStore,
        notifier: Optional[EmailNotifier] = None,
        lookup: Callable[[str], OwnerDetails] = lookup_vehicle,
        fine_rates: Optional[Mapping[str, int]] = None,
        window: timedelta = DEDUP_WINDOW,
        clock: Callable[[], datetime] = utc_now,
        is_cancelled: Callable[[], bool] = lambda: False,
        on_analyzing: Optional[Callable[[], None]] = None,
        on_recorded: Optional[Callable[[ViolationRecord], None]] = None
    ):
        self.cache = RecentViolationCache(window)
        self._store = store
        self._notifier = notifier
        self._lookup = lookup
        self._fine_rates = fine_rates
        self._clock = clock
        self._is_cancelled = is_cancelled
        self._on_analyzing = on_analyzing
        self._on_recorded = on_recorded
        self._pending: Set[asyncio.Future] = set()

    async def process(self, candidate: ViolationCandidate, evidence: EvidenceSource) -> EngineResult:
        if not candidate.detected:
            return EngineResult(Outcome.NOT_DETECTED)

        try:
            candidate.validate()
        except MalformedCandidateError as e:
            logger.warning("⚠️ Ignoring invalid report (call %s): %s", candidate.call_id, e)
            return EngineResult(Outcome.MALFORMED)

        now = self._clock()
        if self.cache.check_and_record(candidate.plate, candidate.crime_types, now):
            return EngineResult(Outcome.DUPLICATE_LOCAL)

        if self._on_analyzing:
            self._on_analyzing()

        image_url = await evidence.url()
        if self._is_cancelled():
            return EngineResult(Outcome.CANCELLED)

        owner = self._lookup(candidate.plate or UNKNOWN_PLATE)
        fine_breakdown, total_fine = compute_fines(candidate.crime_types, self._fine_rates)
        record = build_violation_record(candidate, image_url, owner, fine_breakdown, total_fine, now)

        try:
            result = await asyncio.to_thread(self._store.append, record)
        except RecordStoreError as e:
            logger.error("❌ Failed to save violation for %s: %s", record.vehicle_number, e)
            return EngineResult(Outcome.STORE_FAILED, record=record)

        if self._is_cancelled():
            return EngineResult(Outcome.CANCELLED, record=record)

        if result == DUPLICATE:
            logger.info("⚠️ Store deduplicated %s (%s)", record.vehicle_number, ", ".join(record.violation_type))
            return EngineResult(Outcome.DUPLICATE_REMOTE, record=record)

        logger.info(
            "🚨 Violation recorded: %s | %s | %s | fine %d",
            result, record.vehicle_number, ", ".join(record.violation_type), record.total_fine,
        )

        if self._on_recorded:
            self._on_recorded(record)
        self._notify_later(record)

        return EngineResult(Outcome.RECORDED, record=record, record_id=result)

    def _notify_later(self, record: ViolationRecord) -> None:
        if self._notifier is None:
            return
        task = asyncio.ensure_future(asyncio.to_thread(self._notifier.notify, record))
        self._pending.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Notification task failed: %s", exc)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight notifications (used by tests and clean shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        """Cancel pending notifications and forget the session cache."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self.cache.clear()

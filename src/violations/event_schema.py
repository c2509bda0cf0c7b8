"""
event_schema.py
Defines the canonical data structures for traffic violation reports.

Two shapes live here:
- ViolationCandidate : one `report_violation` tool call as sent by the live model
- ViolationRecord    : the immutable, fine-annotated record written to the store

This schema ensures consistency between:
- Live event processing (pipeline/events.py)
- Deduplication engine (engine.py)
- Record store & backend (backend/store.py, backend/app.py)
"""

import re
import uuid
import datetime
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import MalformedCandidateError


UNKNOWN_PLATE = "UNKNOWN"

VEHICLE_TYPES = ("bike", "scooter", "car", "auto", "truck", "unknown")

VIOLATION_TYPES = (
    "helmet_missing_driver",
    "helmet_missing_pillion",
    "triple_riding",
    "mobile_usage_driver",
    "number_plate_missing",
    "red_light_signal_break",
    "wrong_side",
    "signal_jump",
    "no_seatbelt_driver",
    "no_seatbelt_passenger",
)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


# ============================================================
# Unique ID, timestamp and plate helpers
# ============================================================

def generate_violation_id() -> str:
    """
    Generates a unique readable violation ID.
    Example: 'V-12AB34CD'
    """
    uid = uuid.uuid4().hex[:8].upper()
    return f"V-{uid}"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def current_iso_timestamp(now: Optional[datetime.datetime] = None) -> str:
    """
    Returns the timestamp in ISO8601 (UTC) format.
    Example: '2025-10-26T14:45:31.200Z'
    """
    now = now or utc_now()
    return now.astimezone(datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO timestamp (with or without 'Z'); None when unusable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def normalize_plate(plate: Optional[str]) -> str:
    """
    'MH 12 kn-4567' -> 'MH12KN4567'
    """
    if not plate:
        return ""
    return _NON_ALNUM.sub("", plate).upper()


def _as_flag(value: Any) -> bool:
    # tool args occasionally carry booleans as strings
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def is_unknown_plate(plate: Optional[str]) -> bool:
    """Plates that can never be deduplicated ("UNKNOWN" in any case, or nothing readable)."""
    key = normalize_plate(plate)
    return not key or key == UNKNOWN_PLATE


# ============================================================
# Candidate (inbound tool call)
# ============================================================

@dataclass(frozen=True)
class ViolationCandidate:
    call_id: str
    detected: bool
    crime_types: Tuple[str, ...]
    plate: str
    vehicle_type: str = "unknown"

    @classmethod
    def from_tool_args(cls, call_id: str, args: Optional[Mapping[str, Any]]) -> "ViolationCandidate":
        """
        Build a candidate from `report_violation` arguments:
            {
                "violation_detected": true,
                "violation_type": ["helmet_missing_driver"],
                "vehicle_number": "MH12KN4567",
                "vehicle_type": "bike"
            }
        Missing or oddly typed fields are tolerated; validation happens later.
        """
        args = args or {}

        raw_types = args.get("violation_type") or []
        if isinstance(raw_types, str):
            raw_types = [raw_types]

        crime_types: List[str] = []
        for crime in raw_types:
            crime = str(crime).strip()
            if crime and crime not in crime_types:
                crime_types.append(crime)

        plate = args.get("vehicle_number")
        plate = str(plate).strip() if plate is not None else ""

        return cls(
            call_id=call_id,
            detected=_as_flag(args.get("violation_detected")),
            crime_types=tuple(crime_types),
            plate=plate,
            vehicle_type=str(args.get("vehicle_type") or "unknown"),
        )

    def validate(self) -> None:
        """Raise MalformedCandidateError for 'detected' reports with no crimes."""
        if self.detected and not self.crime_types:
            raise MalformedCandidateError(
                f"violation_detected=true but no violation types for plate {self.plate or UNKNOWN_PLATE!r}"
            )


# ============================================================
# Record (persisted)
# ============================================================

@dataclass(frozen=True)
class OwnerDetails:
    owner_name: Optional[str] = None
    owner_address: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None
    vehicle_model: Optional[str] = None


@dataclass(frozen=True)
class ViolationRecord:
    vehicle_number: str
    vehicle_type: str
    violation_type: Tuple[str, ...]
    timestamp: str
    image_url: str
    owner_name: Optional[str] = None
    owner_address: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None
    vehicle_model: Optional[str] = None
    fine_breakdown: Dict[str, int] = field(default_factory=dict)
    total_fine: int = 0
    violation_detected: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict (lists instead of tuples, copied breakdown)."""
        data = asdict(self)
        data["violation_type"] = list(self.violation_type)
        data["fine_breakdown"] = dict(self.fine_breakdown)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ViolationRecord":
        return cls(
            vehicle_number=data.get("vehicle_number") or UNKNOWN_PLATE,
            vehicle_type=data.get("vehicle_type") or "unknown",
            violation_type=tuple(data.get("violation_type") or ()),
            timestamp=data.get("timestamp") or "",
            image_url=data.get("image_url") or "",
            owner_name=data.get("owner_name"),
            owner_address=data.get("owner_address"),
            owner_phone=data.get("owner_phone"),
            owner_email=data.get("owner_email"),
            vehicle_model=data.get("vehicle_model"),
            fine_breakdown={k: int(v) for k, v in (data.get("fine_breakdown") or {}).items()},
            total_fine=int(data.get("total_fine") or 0),
            violation_detected=bool(data.get("violation_detected", True)),
        )


# ============================================================
# Core schema builder
# ============================================================

def build_violation_record(
    candidate: ViolationCandidate,
    image_url: str,
    owner: OwnerDetails,
    fine_breakdown: Dict[str, int],
    total_fine: int,
    now: Optional[datetime.datetime] = None
) -> ViolationRecord:
    """
    Builds the standardized record for a novel violation.

    Parameters
    ----------
    candidate : ViolationCandidate
        The validated report (detected, non-empty crime types)
    image_url : str
        Uploaded evidence URL (or placeholder)
    owner : OwnerDetails
        Registry lookup result, all None on a miss
    fine_breakdown, total_fine :
        Output of fines.compute_fines()
    now : datetime, optional
        Occurrence time, defaults to current UTC time

    Returns
    -------
    ViolationRecord
    """
    return ViolationRecord(
        vehicle_number=candidate.plate or UNKNOWN_PLATE,
        vehicle_type=candidate.vehicle_type or "unknown",
        violation_type=tuple(candidate.crime_types),
        timestamp=current_iso_timestamp(now),
        image_url=image_url,
        owner_name=owner.owner_name,
        owner_address=owner.owner_address,
        owner_phone=owner.owner_phone,
        owner_email=owner.owner_email,
        vehicle_model=owner.vehicle_model,
        fine_breakdown=dict(fine_breakdown),
        total_fine=int(total_fine),
    )


# ============================================================
# Validation helper
# ============================================================

REQUIRED_RECORD_KEYS = (
    "vehicle_number",
    "vehicle_type",
    "violation_type",
    "timestamp",
    "image_url",
    "fine_breakdown",
    "total_fine",
)


def validate_violation_record(record: Mapping[str, Any]) -> bool:
    """
    Quick validation check for required keys and a non-empty crime list.
    Returns True if valid, False otherwise.
    """
    for key in REQUIRED_RECORD_KEYS:
        if key not in record:
            return False

    return bool(record.get("violation_type"))

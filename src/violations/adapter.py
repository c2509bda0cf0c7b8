"""
violations/adapter.py
Bridges the violation layer and whichever record store is in use.

- RecordStore : the narrow interface the engine writes through
                (backend/store.py on disk, backend/integration_helper.py over HTTP)
- DUPLICATE   : sentinel returned by append() when the store refuses a repeat
- record_to_payload / record_from_payload : ViolationRecord <-> stored dict
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol

from .event_schema import ViolationRecord, validate_violation_record


DUPLICATE = "DUPLICATE"


class RecordStore(Protocol):
    def append(self, record: ViolationRecord) -> str:
        """Write the record; return its id, or DUPLICATE when not written."""
        ...

    def query_recent(self, plate: str) -> List[Dict[str, Any]]:
        ...

    def list_all(self) -> List[Dict[str, Any]]:
        """All records, newest server_created_at first."""
        ...


def record_to_payload(record: ViolationRecord) -> Dict[str, Any]:
    """
    Output (for POST /violations and evidence.json):
        {
            "violation_detected": true,
            "violation_type": ["helmet_missing_driver"],
            "vehicle_number": "MH12KN4567",
            "vehicle_type": "bike",
            "timestamp": "2025-10-26T14:45:31.200Z",
            "image_url": "https://res.cloudinary.com/...",
            "owner_name": "...", ... (None when unregistered)
            "fine_breakdown": {"helmet_missing_driver": 1000},
            "total_fine": 1000
        }
    """
    return record.to_dict()


def record_from_payload(payload: Mapping[str, Any]) -> Optional[ViolationRecord]:
    """Stored dict (id/server_created_at ignored) -> record, None if invalid."""
    if not validate_violation_record(payload):
        return None
    return ViolationRecord.from_dict(payload)

"""
violations package

Business rules for live traffic violation reports:
- Candidate / record schema (event_schema.py)
- Fine table (fines.py) and RTO owner lookup (registry.py)
- Duplicate-incident rules (dedup.py) and the deduplication engine (engine.py)
- Evidence upload (evidence_upload.py) and owner notification (notify.py)
"""

from .adapter import DUPLICATE, RecordStore
from .engine import EngineResult, Outcome, ViolationEngine
from .event_schema import ViolationCandidate, ViolationRecord

__all__ = [
    "DUPLICATE",
    "RecordStore",
    "EngineResult",
    "Outcome",
    "ViolationEngine",
    "ViolationCandidate",
    "ViolationRecord",
]

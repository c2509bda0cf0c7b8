"""
backend package

FastAPI-based record store for the live traffic violation pipeline.

Provides:
- POST /violations → Save new violation (201, or 409 DUPLICATE)
- GET /violations → List violations with filters (repeats collapsed by default)
- GET /violations/recent → Records for one plate inside the dedup window
- GET /violations/{id} → Get single violation
- POST /violations/{id}/notify → Resend the owner email
- DELETE /violations/{id} → Remove a violation
- GET /stats → Dashboard analytics
- POST /violations/import_from_disk → Load existing violations
"""

from .config import get_settings
from .integration_helper import BackendRecordStore, check_backend_health
from .store import JsonRecordStore

__all__ = ["BackendRecordStore", "JsonRecordStore", "check_backend_health", "get_settings"]

__version__ = "1.0.0"

import logging
import os
from datetime import timedelta
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from violations.adapter import DUPLICATE, record_from_payload
from violations.dedup import collapse_duplicates
from violations.errors import NotifyFailure, RecordStoreError
from violations.event_schema import parse_iso_timestamp
from violations.notify import EmailNotifier

# Import config
from .config import get_settings
from .store import JsonRecordStore

logger = logging.getLogger(__name__)

# ===========================
# Load Settings
# ===========================
settings = get_settings()

# Use settings for paths
VIOLATION_ROOT = os.path.abspath(settings.violation_root)
FALLBACK_LOG = os.path.abspath(settings.fallback_log)

app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version
)

# CORS with settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,  # Use from config
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===========================
# Dependencies
# ===========================

@lru_cache()
def get_store() -> JsonRecordStore:
    return JsonRecordStore(
        root=VIOLATION_ROOT,
        fallback_log=FALLBACK_LOG,
        window=timedelta(hours=settings.dedup_window_hours),
    )


@lru_cache()
def get_notifier() -> EmailNotifier:
    return EmailNotifier(
        service_id=settings.emailjs_service_id,
        template_id=settings.emailjs_template_id,
        public_key=settings.emailjs_public_key,
        private_key=settings.emailjs_private_key,
    )


# ===========================
# Pydantic models (API schemas)
# ===========================

class ViolationIn(BaseModel):
    violation_detected: bool = True
    violation_type: List[str] = Field(..., min_length=1)   # ["helmet_missing_driver", "triple_riding"]
    vehicle_number: str                                     # "UNKNOWN" if the plate was unreadable
    vehicle_type: str = "unknown"
    timestamp: str                                          # ISO8601 string, client clock
    image_url: str
    owner_name: Optional[str] = None
    owner_address: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None
    vehicle_model: Optional[str] = None
    fine_breakdown: Dict[str, int] = Field(default_factory=dict)
    total_fine: int = 0


class ViolationOut(ViolationIn):
    """Same as ViolationIn plus store metadata"""
    id: str
    server_created_at: Optional[str] = None


# ===========================
# Utility functions
# ===========================

def filter_violations(
    records: List[Dict],
    vtype: Optional[str] = None,
    plate: Optional[str] = None,
    since: Optional[str] = None,
    until: Optional[str] = None
) -> List[Dict]:
    """
    Apply basic filtering for dashboard queries.
    since/until are ISO timestamps compared against the occurrence time.
    """
    results = records

    if vtype:
        results = [v for v in results if vtype in (v.get("violation_type") or [])]

    if plate:
        # Partial match for license plate
        results = [v for v in results if plate.upper() in (v.get("vehicle_number") or "").upper()]

    since_dt = parse_iso_timestamp(since) if since else None
    until_dt = parse_iso_timestamp(until) if until else None

    if since_dt:
        results = [
            v for v in results
            if parse_iso_timestamp(v.get("timestamp")) and parse_iso_timestamp(v.get("timestamp")) >= since_dt
        ]

    if until_dt:
        results = [
            v for v in results
            if parse_iso_timestamp(v.get("timestamp")) and parse_iso_timestamp(v.get("timestamp")) <= until_dt
        ]

    return results


def _get_or_404(store: JsonRecordStore, violation_id: str) -> Dict:
    v = store.get(violation_id)
    if not v:
        raise HTTPException(status_code=404, detail=f"Violation {violation_id} not found")
    return v


# ===========================
# Routes
# ===========================

@app.on_event("startup")
async def startup_event():
    """Auto-import violations on server start"""
    logger.info("🚀 Starting %s...", settings.api_title)
    logger.info("📁 Violation root: %s", VIOLATION_ROOT)
    logger.info("🌐 CORS allowed origins: %s", settings.allowed_origins_list)

    # Ensure directories exist
    os.makedirs(VIOLATION_ROOT, exist_ok=True)
    os.makedirs(settings.logs_dir, exist_ok=True)

    # Auto-import existing violations
    count = get_store().import_all_from_disk()
    logger.info("✅ Auto-imported %d violations from disk", count)


@app.get("/")
def healthcheck(store: JsonRecordStore = Depends(get_store)):
    """Health check"""
    return {
        "status": "ok",
        "service": settings.api_title,
        "version": settings.api_version,
        "violations_loaded": len(store),
        "violation_root": VIOLATION_ROOT,
        "cors_origins": settings.allowed_origins_list
    }


@app.post("/violations", response_model=ViolationOut, status_code=status.HTTP_201_CREATED)
def add_violation(v: ViolationIn, store: JsonRecordStore = Depends(get_store)):
    """
    The live pipeline sends each novel violation here.

    - 201 with the stored record (id + server_created_at added)
    - 409 {"status": "DUPLICATE"} when the same plate already has an
      overlapping crime inside the dedup window

    Example call from pipeline (Python):
    ```
    import requests

    payload = {
        "violation_detected": True,
        "violation_type": ["helmet_missing_driver"],
        "vehicle_number": "MH12KN4567",
        "vehicle_type": "bike",
        "timestamp": "2025-10-26T14:55:03.120Z",
        "image_url": "https://res.cloudinary.com/demo/image/upload/v1/abc.jpg",
        "fine_breakdown": {"helmet_missing_driver": 1000},
        "total_fine": 1000
    }

    response = requests.post("http://localhost:8000/violations", json=payload)
    print(response.status_code, response.json())
    ```
    """
    record = record_from_payload(v.model_dump())
    if record is None:
        raise HTTPException(status_code=422, detail="Invalid violation record")

    try:
        result = store.append(record)
    except RecordStoreError as e:
        logger.error("❌ Error storing violation: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to store violation: {e}")

    if result == DUPLICATE:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"status": DUPLICATE})

    logger.info("✅ Violation received: %s | Type: %s | Plate: %s", result, v.violation_type, v.vehicle_number)
    return store.get(result)


@app.get("/violations", response_model=List[ViolationOut])
def list_violations(
    vtype: Optional[str] = Query(None, description="Filter by violation type"),
    plate: Optional[str] = Query(None, description="Search by license plate"),
    since: Optional[str] = Query(None, description="Start date (ISO format)"),
    until: Optional[str] = Query(None, description="End date (ISO format)"),
    dedupe: bool = Query(True, description="Collapse repeats of the same incident"),
    limit: int = Query(100, ge=1, le=1000, description="Max results to return"),
    store: JsonRecordStore = Depends(get_store)
):
    """
    Dashboard calls this to populate the table (newest first).

    **Examples:**
    - All violations: `/violations`
    - Helmet only: `/violations?vtype=helmet_missing_driver`
    - Raw rows, no collapsing: `/violations?dedupe=false`
    - Date range: `/violations?since=2025-10-20T00:00:00Z&until=2025-10-25T23:59:59Z`
    """
    res = store.list_all()
    if dedupe:
        res = collapse_duplicates(res, store.window)

    res = filter_violations(res, vtype=vtype, plate=plate, since=since, until=until)

    # Apply limit
    res = res[:limit]

    logger.debug("📊 Fetched %d violations (filters applied)", len(res))
    return res


@app.get("/violations/recent", response_model=List[ViolationOut])
def recent_violations(
    plate: str = Query(..., description="Exact license plate"),
    store: JsonRecordStore = Depends(get_store)
):
    """Records for one plate inside the dedup window."""
    return store.query_recent(plate)


@app.get("/violations/{violation_id}", response_model=ViolationOut)
def get_violation(violation_id: str, store: JsonRecordStore = Depends(get_store)):
    """
    Dashboard calls this when you click one specific row to open a detail modal.

    **Example:** `/violations/V-12AB34CD`
    """
    return _get_or_404(store, violation_id)


@app.post("/violations/{violation_id}/notify")
def resend_notification(
    violation_id: str,
    store: JsonRecordStore = Depends(get_store),
    notifier: EmailNotifier = Depends(get_notifier)
):
    """
    Manually (re)send the owner email for a stored violation.

    **Example:** `curl -X POST http://localhost:8000/violations/V-12AB34CD/notify`
    """
    record = record_from_payload(_get_or_404(store, violation_id))
    if record is None:
        raise HTTPException(status_code=422, detail=f"Violation {violation_id} is not a valid record")

    if not record.owner_email:
        raise HTTPException(status_code=400, detail="No email address on file for this vehicle owner")

    if not notifier.configured:
        raise HTTPException(status_code=503, detail="EmailJS is not configured")

    try:
        notifier.send(record)
    except NotifyFailure as e:
        logger.error("❌ Resend failed for %s: %s", violation_id, e)
        raise HTTPException(status_code=502, detail=f"Failed to send email: {e}")

    logger.info("📧 Email resent for %s to %s", violation_id, record.owner_email)
    return {"violation_id": violation_id, "status": "sent", "email": record.owner_email}


@app.post("/violations/import_from_disk")
def import_from_disk(store: JsonRecordStore = Depends(get_store)):
    """
    Rescan output/violations/*, read evidence.json, and load everything
    into memory for the dashboard.

    **Usage:** `curl -X POST http://localhost:8000/violations/import_from_disk`
    """
    count = store.import_all_from_disk()
    return {
        "imported": count,
        "total_in_memory": len(store),
        "message": f"Successfully imported {count} violations from disk"
    }


@app.get("/stats")
def get_statistics(store: JsonRecordStore = Depends(get_store)):
    """
    Dashboard analytics endpoint

    Returns summary statistics for all stored violations
    """
    return store.stats()


@app.delete("/violations/{violation_id}")
def delete_violation(violation_id: str, store: JsonRecordStore = Depends(get_store)):
    """
    Delete a violation (and its evidence folder)

    **Example:** `DELETE /violations/V-12AB34CD`
    """
    if not store.delete(violation_id):
        raise HTTPException(status_code=404, detail=f"Violation {violation_id} not found")

    logger.info("🗑️  Deleted violation: %s", violation_id)

    return {"message": f"Violation {violation_id} deleted", "remaining": len(store)}


# ===========================
# Run server
# ===========================

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    uvicorn.run(
        "backend.app:app",
        host=settings.host,
        port=settings.port,
        reload=True  # Auto-reload on code changes during development
    )

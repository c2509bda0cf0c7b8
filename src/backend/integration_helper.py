"""
Helper used by the live pipeline to write violations through the backend API
instead of a local store.

BackendRecordStore implements the same RecordStore interface as
backend/store.py, mapping HTTP results onto it:
- 201 -> new record id
- 409 -> DUPLICATE (the backend already has this incident)
- anything else -> RecordStoreError
"""
import logging
import requests
from typing import Any, Dict, List, Optional

from violations.adapter import DUPLICATE, record_to_payload
from violations.errors import RecordStoreError
from violations.event_schema import ViolationRecord

logger = logging.getLogger(__name__)

# Backend URL (change if backend is on different host)
BACKEND_URL = "http://localhost:8000"


def check_backend_health(base_url: str = BACKEND_URL, timeout: float = 2.0) -> bool:
    """
    Check if backend server is running

    Usage:
    ```
    if check_backend_health():
        print("✅ Backend is ready")
    ```
    """
    try:
        response = requests.get(f"{base_url.rstrip('/')}/", timeout=timeout)
        return response.status_code == 200
    except requests.RequestException as e:
        logger.warning("❌ Backend health check failed: %s", e)
        return False


class BackendRecordStore:
    def __init__(
        self,
        base_url: str = BACKEND_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()

    def append(self, record: ViolationRecord) -> str:
        """
        Send violation to backend API

        Returns the new violation id, or DUPLICATE when the backend refused it.
        """
        try:
            resp = self._http.post(
                f"{self.base_url}/violations",
                json=record_to_payload(record),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RecordStoreError(f"backend unreachable: {e}") from e

        if resp.status_code == 409:
            return DUPLICATE

        if resp.status_code not in (200, 201):
            raise RecordStoreError(f"backend returned {resp.status_code}: {resp.text[:200]}")

        try:
            return resp.json()["id"]
        except (ValueError, KeyError) as e:
            raise RecordStoreError("backend response had no id") from e

    def query_recent(self, plate: str) -> List[Dict[str, Any]]:
        return self._get_list("/violations/recent", {"plate": plate})

    def list_all(self) -> List[Dict[str, Any]]:
        return self._get_list("/violations", {"dedupe": "false", "limit": 1000})

    def _get_list(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            resp = self._http.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RecordStoreError(f"GET {path} failed: {e}") from e

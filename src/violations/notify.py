"""
notify.py
Emails the vehicle owner about a recorded violation through EmailJS.

Fire-and-forget from the engine's point of view: notify() returns True/False
and never raises.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .errors import NotifyFailure
from .event_schema import ViolationRecord, parse_iso_timestamp

logger = logging.getLogger(__name__)

EMAILJS_SEND_URL = "https://api.emailjs.com/api/v1.0/email/send"
DEFAULT_LOCATION = "AI Traffic Cam - Main Sector"


def build_template_params(record: ViolationRecord, location: str = DEFAULT_LOCATION) -> Dict[str, Any]:
    """
    Template variables for the violation email.

    The recipient address is repeated under several names so it matches
    however the template's "To" field is configured.
    """
    when = parse_iso_timestamp(record.timestamp)
    date_text = when.strftime("%Y-%m-%d %H:%M:%S UTC") if when else record.timestamp

    return {
        "to_name": record.owner_name or "Vehicle Owner",
        "to_email": record.owner_email,
        "email": record.owner_email,
        "reply_to": record.owner_email,
        "recipient": record.owner_email,
        "vehicle_number": record.vehicle_number,
        "violation_list": ", ".join(v.replace("_", " ").upper() for v in record.violation_type),
        "fine_amount": record.total_fine,
        "date": date_text,
        "evidence_link": record.image_url,
        "location": location,
        "message": f"A traffic violation has been recorded for your vehicle {record.vehicle_number}.",
    }


class EmailNotifier:
    def __init__(
        self,
        service_id: Optional[str],
        template_id: Optional[str],
        public_key: Optional[str],
        private_key: Optional[str] = None,
        location: str = DEFAULT_LOCATION,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.service_id = service_id
        self.template_id = template_id
        self.public_key = public_key
        self.private_key = private_key
        self.location = location
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.service_id and self.template_id and self.public_key)

    def notify(self, record: ViolationRecord) -> bool:
        if not record.owner_email:
            logger.info("ℹ️ Email skipped: no email address for owner of %s", record.vehicle_number)
            return False

        if not self.configured:
            logger.warning("EmailJS not configured, cannot notify %s", record.owner_email)
            return False

        logger.info("📧 Sending violation email to %s...", record.owner_email)
        try:
            self.send(record)
        except NotifyFailure as e:
            logger.error("❌ FAILED to send email for %s: %s", record.vehicle_number, e)
            return False

        logger.info("✅ Email sent for %s", record.vehicle_number)
        return True

    def send(self, record: ViolationRecord) -> None:
        """Raises NotifyFailure; used directly when the caller needs the error."""
        payload: Dict[str, Any] = {
            "service_id": self.service_id,
            "template_id": self.template_id,
            "user_id": self.public_key,
            "template_params": build_template_params(record, self.location),
        }
        if self.private_key:
            payload["accessToken"] = self.private_key

        try:
            resp = self._http.post(EMAILJS_SEND_URL, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotifyFailure(str(e)) from e

        if resp.status_code != 200:
            raise NotifyFailure(f"EmailJS returned {resp.status_code}: {resp.text[:200]}")

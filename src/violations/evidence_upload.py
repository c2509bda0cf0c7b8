"""
evidence_upload.py
Uploads the evidence frame for a violation to Cloudinary and returns its URL.

Upload is best-effort: any failure degrades to a placeholder image URL so the
violation record can still be written.
"""

import base64
import hashlib
import logging
import time
from typing import Dict, Optional

import requests

from .errors import UploadFailure

logger = logging.getLogger(__name__)

CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/image/upload"

PLACEHOLDER_NOT_CONFIGURED = "https://placehold.co/600x400?text=Cloudinary+Not+Configured"
PLACEHOLDER_UPLOAD_FAILED = "https://placehold.co/600x400?text=Upload+Failed"
PLACEHOLDER_CAMERA_ERROR = "https://placehold.co/600x400?text=Camera+Error"


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """
    Cloudinary signed-upload signature:
    sha1("k1=v1&k2=v2" (keys sorted) + api_secret), hex encoded.
    """
    ordered = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1((ordered + api_secret).encode("utf-8")).hexdigest()


class CloudinaryUploader:
    def __init__(
        self,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        timeout: float = 15.0,
        session: Optional[requests.Session] = None
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def upload(self, image_bytes: Optional[bytes]) -> str:
        """JPEG bytes -> secure URL, or a placeholder URL. Never raises."""
        if not image_bytes:
            return PLACEHOLDER_CAMERA_ERROR

        if not self.configured:
            logger.error("Cloudinary credentials missing")
            return PLACEHOLDER_NOT_CONFIGURED

        try:
            return self._upload(image_bytes)
        except UploadFailure as e:
            logger.error("Error uploading evidence to Cloudinary: %s", e)
            return PLACEHOLDER_UPLOAD_FAILED

    def _upload(self, image_bytes: bytes) -> str:
        timestamp = str(int(time.time()))
        signature = sign_params({"timestamp": timestamp}, self.api_secret)
        data_uri = "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode("ascii")

        try:
            resp = self._http.post(
                CLOUDINARY_UPLOAD_URL.format(cloud_name=self.cloud_name),
                data={
                    "file": data_uri,
                    "api_key": self.api_key,
                    "timestamp": timestamp,
                    "signature": signature,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UploadFailure(str(e)) from e

        if not resp.ok:
            raise UploadFailure(f"{resp.status_code} {resp.reason} - {resp.text[:200]}")

        try:
            url = resp.json().get("secure_url")
        except ValueError as e:
            raise UploadFailure("response was not JSON") from e

        if not url:
            raise UploadFailure("response had no secure_url")

        return url

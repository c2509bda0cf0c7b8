"""
run_live.py
Console entry point: start a live monitoring session from settings and run
until Ctrl+C.

    traffic-sentinel-live
    (or) python -m pipeline.run_live
"""

import asyncio
import logging
from datetime import timedelta

from backend.integration_helper import BackendRecordStore, check_backend_health
from backend.store import JsonRecordStore
from violations.adapter import RecordStore
from violations.evidence_upload import CloudinaryUploader
from violations.notify import EmailNotifier

from .config import LiveSettings, get_live_settings
from .errors import ConfigError, MediaAccessError, RemoteError
from .session import SessionController
from .state import SessionState, SessionView

logger = logging.getLogger(__name__)


def build_store(settings: LiveSettings) -> RecordStore:
    if settings.record_store_url:
        if not check_backend_health(settings.record_store_url):
            logger.warning("⚠️  Backend not reachable at %s; writes will fail until it is up", settings.record_store_url)
        return BackendRecordStore(settings.record_store_url)

    logger.info("📁 No backend configured, saving to %s", settings.violation_root)
    store = JsonRecordStore(
        root=settings.violation_root,
        fallback_log=settings.fallback_log,
        window=timedelta(hours=settings.dedup_window_hours),
    )
    store.import_all_from_disk()
    return store


def build_controller(settings: LiveSettings) -> SessionController:
    uploader = CloudinaryUploader(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
    )
    notifier = EmailNotifier(
        settings.emailjs_service_id,
        settings.emailjs_template_id,
        settings.emailjs_public_key,
        private_key=settings.emailjs_private_key,
        location=settings.location,
    )
    controller = SessionController(settings, build_store(settings), uploader, notifier)
    controller.view.subscribe(_log_view)
    return controller


_last_shown = None


def _log_view(view: SessionView) -> None:
    global _last_shown
    record = view.current_violation
    if record is not None and record is not _last_shown:
        logger.info(
            "🚨 %s (%s): %s | fine ₹%d | owner: %s",
            record.vehicle_number,
            record.vehicle_type,
            ", ".join(record.violation_type),
            record.total_fine,
            record.owner_name or "UNREGISTERED",
        )
    _last_shown = record
    if view.status == SessionState.ERROR and view.error_message:
        logger.error("❌ %s", view.error_message)


async def run(settings: LiveSettings) -> int:
    controller = build_controller(settings)
    try:
        await controller.connect()
    except (ConfigError, MediaAccessError, RemoteError) as e:
        logger.error("❌ Could not start live session: %s", e)
        return 1

    logger.info("🎥 Monitoring... press Ctrl+C to stop")
    try:
        while controller.state == SessionState.CONNECTED:
            await asyncio.sleep(0.5)
    finally:
        await controller.disconnect()

    return 0 if controller.view.error_message is None else 1


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    for noisy in ("httpx", "websockets", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    try:
        return asyncio.run(run(get_live_settings()))
    except KeyboardInterrupt:
        logger.info("👋 Stopped")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())

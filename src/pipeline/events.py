"""
events.py
Routes inbound live messages.

ToolCallBatch -> one evidence frame for the whole batch, each report_violation
                 call through the dedup engine, every call acknowledged
AudioChunk    -> decode, hand to the playback scheduler

Batches run as background tasks so audio keeps flowing while a batch
uploads or persists.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from violations.engine import ViolationEngine
from violations.evidence_upload import CloudinaryUploader
from violations.event_schema import ViolationCandidate

from .channel import REPORT_VIOLATION, AudioChunk, InboundMessage, LiveChannel, ToolCallBatch
from .devices import CameraSource
from .media import decode_pcm16, encode_jpeg
from .playback import PlaybackScheduler
from .state import CancellationToken, SessionView

logger = logging.getLogger(__name__)

ACK_LOGGED = "logged"
ACK_UNSUPPORTED = "unsupported"


class BatchEvidence:
    """One captured frame per batch; uploaded at most once, on first use."""

    def __init__(self, image_bytes: Optional[bytes], uploader: CloudinaryUploader):
        self.image_bytes = image_bytes
        self._uploader = uploader
        self._url: Optional[str] = None
        self._lock = asyncio.Lock()
        self.uploads = 0

    async def url(self) -> str:
        async with self._lock:
            if self._url is None:
                self.uploads += 1
                self._url = await asyncio.to_thread(self._uploader.upload, self.image_bytes)
            return self._url


class EventProcessor:
    def __init__(
        self,
        channel: LiveChannel,
        engine: ViolationEngine,
        scheduler: PlaybackScheduler,
        uploader: CloudinaryUploader,
        camera: CameraSource,
        view: SessionView,
        token: CancellationToken,
        spawn: Callable[[Awaitable], asyncio.Task],
        jpeg_quality: int = 80,
        output_sample_rate: int = 24000,
        analyzing_clear_delay_s: float = 0.5,
        violation_display_s: float = 4.0
    ):
        self._channel = channel
        self._engine = engine
        self._scheduler = scheduler
        self._uploader = uploader
        self._camera = camera
        self._view = view
        self._token = token
        self._spawn = spawn
        self.jpeg_quality = jpeg_quality
        self.output_sample_rate = output_sample_rate
        self.analyzing_clear_delay_s = analyzing_clear_delay_s
        self.violation_display_s = violation_display_s
        self._display_timer: Optional[asyncio.Task] = None

    def dispatch(self, message: InboundMessage) -> None:
        if self._token.is_set():
            return

        if isinstance(message, ToolCallBatch):
            self._spawn(self.handle_batch(message))
        elif isinstance(message, AudioChunk):
            self.handle_audio(message)
        else:
            logger.debug("Ignoring unknown message %r", message)

    # ------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------

    def handle_audio(self, message: AudioChunk) -> None:
        try:
            decoded = decode_pcm16(message.data, self.output_sample_rate)
        except ValueError as e:
            logger.debug("Dropping undecodable audio chunk: %s", e)
            return
        self._scheduler.schedule(decoded)

    # ------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------

    def _capture_jpeg(self) -> Optional[bytes]:
        frame = self._camera.read()
        if frame is None:
            return None
        return encode_jpeg(frame, self.jpeg_quality)

    async def handle_batch(self, batch: ToolCallBatch) -> None:
        evidence: Optional[BatchEvidence] = None
        if any(call.name == REPORT_VIOLATION for call in batch.calls):
            image_bytes = await asyncio.to_thread(self._capture_jpeg)
            evidence = BatchEvidence(image_bytes, self._uploader)

        try:
            for call in batch.calls:
                if self._token.is_set():
                    return

                if call.name != REPORT_VIOLATION:
                    logger.debug("Unsupported tool call %s (%s)", call.name, call.id)
                    await self._channel.send_tool_response(call.id, call.name, ACK_UNSUPPORTED)
                    continue

                try:
                    candidate = ViolationCandidate.from_tool_args(call.id, call.args)
                    result = await self._engine.process(candidate, evidence)
                    logger.debug("Call %s -> %s", call.id, result.outcome.value)
                except Exception:
                    logger.exception("❌ Failed to handle tool call %s", call.id)
                finally:
                    if not self._token.is_set():
                        await self._channel.send_tool_response(call.id, call.name, ACK_LOGGED)
        finally:
            if not self._token.is_set():
                self._spawn(self._clear_analyzing())

    async def _clear_analyzing(self) -> None:
        await asyncio.sleep(self.analyzing_clear_delay_s)
        if self._token.is_set():
            return
        self._view.update(is_analyzing=False)
        self._restart_display_timer()

    def _restart_display_timer(self) -> None:
        if self._display_timer is not None and not self._display_timer.done():
            self._display_timer.cancel()
        self._display_timer = self._spawn(self._clear_violation())

    async def _clear_violation(self) -> None:
        await asyncio.sleep(self.violation_display_s)
        if not self._token.is_set():
            self._view.update(current_violation=None)


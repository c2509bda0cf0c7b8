"""
session.py
Live session lifecycle.

    Disconnected -> Connecting -> Connected -> Disconnected | Error

One controller owns at most one Session at a time. The Session object holds
every handle created for it (channel, camera, mic, pumps, playback, engine,
background tasks) and teardown releases all of them. Close/error notifications
carry the generation of the session they belong to; stale ones are ignored.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Set, Tuple

import websockets
from google.genai import errors as genai_errors

from violations.adapter import RecordStore
from violations.engine import ViolationEngine
from violations.event_schema import OwnerDetails, ViolationRecord, utc_now
from violations.evidence_upload import CloudinaryUploader
from violations.notify import EmailNotifier
from violations.registry import lookup_vehicle

from .channel import NORMAL_CLOSURE, ChannelClosed, GeminiLiveChannel, LiveChannel
from .config import LiveSettings
from .devices import CameraSource, MicrophoneSource, open_media_devices
from .errors import ConfigError, MediaAccessError, RemoteError
from .events import EventProcessor
from .playback import AudioSink, PlaybackScheduler, SoundDeviceSink
from .pumps import AudioPump, VideoPump
from .state import CancellationToken, SessionState, SessionView

logger = logging.getLogger(__name__)

MSG_MISSING_KEY = "API key is missing."
MSG_MEDIA_ACCESS = "Could not access camera or microphone."
MSG_CONNECT_FAILED = "Failed to connect to the live service."
MSG_CONNECT_TIMEOUT = "Connection timed out."
MSG_CONNECTION_ERROR = "Connection error."
MSG_SWITCH_FAILED = "Failed to switch camera."

ChannelFactory = Callable[[str, str], Awaitable[LiveChannel]]
DeviceFactory = Callable[[int, int, int], Tuple[CameraSource, MicrophoneSource]]
SinkFactory = Callable[[int], AudioSink]

_HANDSHAKE_ERRORS = (
    genai_errors.APIError,
    websockets.exceptions.WebSocketException,
    OSError,
)


@dataclass
class Session:
    generation: int
    token: CancellationToken = field(default_factory=CancellationToken)
    channel: Optional[LiveChannel] = None
    camera: Optional[CameraSource] = None
    microphone: Optional[MicrophoneSource] = None
    audio_pump: Optional[AudioPump] = None
    video_pump: Optional[VideoPump] = None
    scheduler: Optional[PlaybackScheduler] = None
    engine: Optional[ViolationEngine] = None
    processor: Optional[EventProcessor] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)
    errored: bool = False
    closed: bool = False

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed: %r", exc)


class SessionController:
    def __init__(
        self,
        settings: LiveSettings,
        store: RecordStore,
        uploader: CloudinaryUploader,
        notifier: Optional[EmailNotifier] = None,
        view: Optional[SessionView] = None,
        channel_factory: ChannelFactory = GeminiLiveChannel.open,
        device_factory: DeviceFactory = open_media_devices,
        sink_factory: SinkFactory = SoundDeviceSink,
        lookup: Callable[[str], OwnerDetails] = lookup_vehicle,
        clock: Callable[[], datetime] = utc_now
    ):
        self.settings = settings
        self.view = view or SessionView(camera_index=settings.camera_index)
        self._store = store
        self._uploader = uploader
        self._notifier = notifier
        self._channel_factory = channel_factory
        self._device_factory = device_factory
        self._sink_factory = sink_factory
        self._lookup = lookup
        self._clock = clock
        self._generation = 0
        self._session: Optional[Session] = None

    @property
    def state(self) -> SessionState:
        return self.view.status

    @property
    def session(self) -> Optional[Session]:
        return self._session

    # ============================================================
    # connect / disconnect
    # ============================================================

    async def connect(self) -> None:
        """
        Raises ConfigError, MediaAccessError or RemoteError; on failure the
        state is Error and everything acquired so far has been released.
        """
        if self.view.status in (SessionState.CONNECTING, SessionState.CONNECTED):
            logger.warning("connect() ignored: session already %s", self.view.status.value)
            return

        if not self.settings.gemini_api_key:
            self.view.update(status=SessionState.ERROR, error_message=MSG_MISSING_KEY)
            raise ConfigError("GEMINI_API_KEY is not set")

        self._generation += 1
        session = Session(generation=self._generation)
        self._session = session
        self.view.update(
            status=SessionState.CONNECTING,
            error_message=None,
            current_violation=None,
            is_analyzing=False,
            camera_index=self.settings.camera_index,
        )
        logger.info("🚀 Connecting live session #%d...", session.generation)

        try:
            session.camera, session.microphone = await asyncio.to_thread(
                self._device_factory,
                self.settings.camera_index,
                self.settings.input_sample_rate,
                self.settings.audio_block_size,
            )
            if session.token.is_set():
                await self._release_partial(session)
                return

            session.channel = await asyncio.wait_for(
                self._channel_factory(self.settings.gemini_api_key, self.settings.model),
                timeout=self.settings.connect_timeout_s,
            )
            if session.token.is_set():
                logger.info("Connect for session #%d finished after disconnect; releasing", session.generation)
                await self._release_partial(session)
                return

            self._wire(session)
            session.audio_pump.start()
            session.video_pump.start()

        except MediaAccessError as e:
            await self._fail_connect(session, MSG_MEDIA_ACCESS, e)
            raise
        except asyncio.TimeoutError as e:
            await self._fail_connect(session, MSG_CONNECT_TIMEOUT, e)
            raise RemoteError(f"handshake did not finish within {self.settings.connect_timeout_s}s") from e
        except RemoteError as e:
            await self._fail_connect(session, MSG_CONNECT_FAILED, e)
            raise
        except _HANDSHAKE_ERRORS as e:
            await self._fail_connect(session, MSG_CONNECT_FAILED, e)
            raise RemoteError(str(e)) from e

        self.view.update(status=SessionState.CONNECTED)
        session.spawn(self._consume(session))
        logger.info("✅ Live session #%d connected", session.generation)

    async def _release_partial(self, session: Session) -> None:
        """Handles acquired by a connect() that lost the race with disconnect()."""
        if session.channel is not None:
            await session.channel.close()
        if session.microphone is not None:
            session.microphone.stop()
        if session.camera is not None:
            session.camera.release()

    async def _fail_connect(self, session: Session, message: str, exc: BaseException) -> None:
        logger.error("❌ Connect failed: %s", exc)
        await self._teardown(session)
        await self._release_partial(session)
        if session.generation == self._generation:
            self.view.update(status=SessionState.ERROR, error_message=message)

    def _wire(self, session: Session) -> None:
        s = self.settings
        loop = asyncio.get_running_loop()

        session.scheduler = PlaybackScheduler(self._sink_factory(s.output_sample_rate))
        session.engine = ViolationEngine(
            store=self._store,
            notifier=self._notifier,
            lookup=self._lookup,
            fine_rates=s.fine_rates,
            window=timedelta(hours=s.dedup_window_hours),
            clock=self._clock,
            is_cancelled=session.token.is_set,
            on_analyzing=lambda: self._on_analyzing(session),
            on_recorded=lambda record: self._on_recorded(session, record),
        )
        session.processor = EventProcessor(
            channel=session.channel,
            engine=session.engine,
            scheduler=session.scheduler,
            uploader=self._uploader,
            camera=session.camera,
            view=self.view,
            token=session.token,
            spawn=session.spawn,
            jpeg_quality=s.jpeg_quality,
            output_sample_rate=s.output_sample_rate,
            analyzing_clear_delay_s=s.analyzing_clear_delay_s,
            violation_display_s=s.violation_display_s,
        )
        session.audio_pump = AudioPump(session.microphone, session.channel, loop, session.token)
        session.video_pump = VideoPump(
            session.camera, session.channel, session.token,
            frame_rate=s.frame_rate, jpeg_quality=s.jpeg_quality,
        )

    async def disconnect(self) -> None:
        """Always succeeds; safe to call repeatedly and from session tasks."""
        session, self._session = self._session, None
        if session is not None:
            await self._teardown(session)
        self.view.update(
            status=SessionState.DISCONNECTED,
            error_message=None,
            is_analyzing=False,
            current_violation=None,
        )

    async def _teardown(self, session: Session) -> None:
        if session.closed:
            return
        session.closed = True
        session.token.cancel()

        # pumps and playback
        if session.audio_pump is not None:
            session.audio_pump.stop()
        if session.video_pump is not None:
            await session.video_pump.stop()
        if session.scheduler is not None:
            session.scheduler.stop_all()

        # background work: batches, display timers, notifications
        if session.engine is not None:
            session.engine.close()
        current = asyncio.current_task()
        pending = [t for t in list(session.tasks) if t is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if session.channel is not None:
            await session.channel.close()

        # hardware
        if session.microphone is not None:
            session.microphone.stop()
        if session.camera is not None:
            session.camera.release()

        if self._session is session:
            self._session = None
        logger.info("🔌 Session #%d torn down", session.generation)

    # ============================================================
    # Inbound
    # ============================================================

    async def _consume(self, session: Session) -> None:
        try:
            async for message in session.channel.messages():
                if session.token.is_set():
                    return
                session.processor.dispatch(message)
        except ChannelClosed as e:
            await self._on_channel_closed(session.generation, e.code)
        except Exception as e:
            # any other transport failure ends the session as an error
            await self._on_channel_error(session.generation, e)

    def _current(self, generation: int) -> Optional[Session]:
        session = self._session
        if session is None or session.generation != generation:
            return None
        return session

    async def _on_channel_closed(self, generation: int, code: Optional[int]) -> None:
        session = self._current(generation)
        if session is None:
            logger.debug("Ignoring close (code=%s) for stale session #%d", code, generation)
            return
        if session.errored:
            logger.debug("Ignoring close (code=%s) after error on session #%d", code, generation)
            return

        await self._teardown(session)
        if generation != self._generation:
            return

        if code is None or code == NORMAL_CLOSURE:
            logger.info("Session #%d closed normally", generation)
            self.view.update(status=SessionState.DISCONNECTED, error_message=None)
        else:
            logger.warning("⚠️ Session #%d closed unexpectedly (code %s)", generation, code)
            self.view.update(
                status=SessionState.ERROR,
                error_message=f"Session closed unexpectedly (Code: {code}).",
            )

    async def _on_channel_error(self, generation: int, exc: BaseException) -> None:
        session = self._current(generation)
        if session is None:
            logger.debug("Ignoring error for stale session #%d: %s", generation, exc)
            return

        logger.error("❌ Live session #%d error: %s", generation, exc)
        session.errored = True
        await self._teardown(session)
        if generation == self._generation:
            self.view.update(status=SessionState.ERROR, error_message=MSG_CONNECTION_ERROR)

    # ============================================================
    # Engine callbacks
    # ============================================================

    def _on_analyzing(self, session: Session) -> None:
        if not session.token.is_set():
            self.view.update(is_analyzing=True)

    def _on_recorded(self, session: Session, record: ViolationRecord) -> None:
        if not session.token.is_set():
            self.view.update(current_violation=record)

    # ============================================================
    # Camera
    # ============================================================

    async def switch_camera(self) -> bool:
        session = self._session
        if session is None or session.camera is None or self.view.status != SessionState.CONNECTED:
            logger.warning("switch_camera() ignored: no live session")
            return False

        primary, alt = self.settings.camera_index, self.settings.alt_camera_index
        target = alt if self.view.camera_index == primary else primary

        try:
            await asyncio.to_thread(session.camera.switch, target)
        except MediaAccessError as e:
            logger.error("❌ Camera switch failed: %s", e)
            self.view.update(error_message=MSG_SWITCH_FAILED)
            return False

        self.view.update(camera_index=target, error_message=None)
        return True

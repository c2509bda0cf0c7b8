"""
pumps.py
Capture pumps feeding the live channel.

- AudioPump : driven by the microphone callback (sounddevice thread); each
              block is encoded there and one send is handed to the event loop.
- VideoPump : asyncio ticker at frame_rate fps; camera read + JPEG encode run
              in a worker thread.

Nothing is sent once the session's cancellation token is set.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from .channel import LiveChannel
from .devices import CameraSource, MicrophoneSource
from .media import MediaChunk, audio_chunk, video_chunk
from .state import CancellationToken

logger = logging.getLogger(__name__)


class AudioPump:
    def __init__(
        self,
        microphone: MicrophoneSource,
        channel: LiveChannel,
        loop: asyncio.AbstractEventLoop,
        token: CancellationToken
    ):
        self._mic = microphone
        self._channel = channel
        self._loop = loop
        self._token = token
        self.blocks_sent = 0

    def start(self) -> None:
        self._mic.start(self.on_block)

    def on_block(self, samples: np.ndarray) -> None:
        """Runs on the audio thread."""
        if self._token.is_set():
            return

        chunk = audio_chunk(samples)
        try:
            asyncio.run_coroutine_threadsafe(self._send(chunk), self._loop)
        except RuntimeError as e:
            # loop already closed
            logger.debug("Dropped audio block: %s", e)
            return
        self.blocks_sent += 1

    async def _send(self, chunk: MediaChunk) -> None:
        # token may have been set while the block waited for the loop
        if self._token.is_set():
            return
        await self._channel.send_media(chunk)

    def stop(self) -> None:
        self._mic.stop()


class VideoPump:
    def __init__(
        self,
        camera: CameraSource,
        channel: LiveChannel,
        token: CancellationToken,
        frame_rate: float = 5.0,
        jpeg_quality: int = 80
    ):
        self._camera = camera
        self._channel = channel
        self._token = token
        self.interval = 1.0 / frame_rate if frame_rate > 0 else 0.2
        self.jpeg_quality = jpeg_quality
        self.frames_sent = 0
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="video-pump")

    async def _run(self) -> None:
        while not self._token.is_set():
            await self.tick()
            await asyncio.sleep(self.interval)

    def _capture(self) -> Optional[MediaChunk]:
        frame = self._camera.read()
        if frame is None:
            return None
        return video_chunk(frame, self.jpeg_quality)

    async def tick(self) -> bool:
        """One frame; returns True when something was sent."""
        if self._token.is_set():
            return False

        chunk = await asyncio.to_thread(self._capture)
        if chunk is None or self._token.is_set():
            return False

        await self._channel.send_media(chunk)
        self.frames_sent += 1
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

"""
playback.py
Gapless, non-overlapping playback of inbound audio.

One cursor (next_start) per session:
    start      = max(next_start, now)
    next_start = start + duration
Bursty arrivals queue back to back; a chunk arriving after silence starts now.
"""

import asyncio
import logging
import threading
from typing import Any, Optional, Protocol, Set

import numpy as np

from .media import DecodedAudio

logger = logging.getLogger(__name__)


class AudioSink(Protocol):
    def now(self) -> float:
        ...

    def play_at(self, audio: DecodedAudio, start: float) -> asyncio.Future:
        ...

    def close(self) -> None:
        ...


class PlaybackScheduler:
    def __init__(self, sink: AudioSink):
        self._sink = sink
        self.next_start = 0.0
        self._active: Set[asyncio.Future] = set()
        self._stopped = False

    @property
    def active(self) -> int:
        return len(self._active)

    def schedule(self, audio: DecodedAudio) -> Optional[float]:
        """Returns the scheduled start time, or None once stopped."""
        if self._stopped:
            return None

        start = max(self.next_start, self._sink.now())
        handle = self._sink.play_at(audio, start)
        self._active.add(handle)
        handle.add_done_callback(self._active.discard)
        self.next_start = start + audio.duration
        return start

    def stop_all(self) -> None:
        self._stopped = True
        for handle in list(self._active):
            handle.cancel()
        self._active.clear()
        self.next_start = 0.0
        self._sink.close()


class SoundDeviceSink:
    """
    Speaker output on the event loop clock.
    Each chunk sleeps until its start time, then is written to the stream
    from a worker thread (writes are serialized by a lock).
    """

    def __init__(self, sample_rate: int = 24000, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.sample_rate = sample_rate
        self._loop = loop or asyncio.get_running_loop()
        self._write_lock = threading.Lock()
        self._stream: Optional[Any] = None
        self._closed = False

    def now(self) -> float:
        return self._loop.time()

    def _ensure_stream(self) -> Any:
        if self._stream is None:
            import sounddevice as sd

            self._stream = sd.OutputStream(samplerate=self.sample_rate, channels=1, dtype="float32")
            self._stream.start()
        return self._stream

    def _write(self, samples: np.ndarray) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._ensure_stream().write(samples.reshape(-1, 1))

    async def _play(self, audio: DecodedAudio, start: float) -> None:
        delay = start - self.now()
        if delay > 0:
            await asyncio.sleep(delay)
        await asyncio.to_thread(self._write, audio.samples)

    def play_at(self, audio: DecodedAudio, start: float) -> asyncio.Future:
        return self._loop.create_task(self._play(audio, start))

    def close(self) -> None:
        # abort() unblocks a write in progress, so no lock here
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        import sounddevice as sd

        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError as e:
            logger.debug("Speaker close error: %s", e)

"""
devices.py
Camera and microphone handles owned by one live session.

Both are acquired in connect() and released on teardown; acquisition
failures surface as MediaAccessError.
"""

import logging
import threading
from typing import Any, Callable, Optional, Tuple

import cv2
import numpy as np

from .errors import MediaAccessError

logger = logging.getLogger(__name__)


def _sounddevice():
    # PortAudio is loaded when the module is imported
    try:
        import sounddevice
    except OSError as e:
        raise MediaAccessError(f"PortAudio is not available: {e}") from e
    return sounddevice


class CameraSource:
    """OpenCV capture; read() and switch() may be called from worker threads."""

    def __init__(self, index: int = 0):
        self.index = index
        self._lock = threading.Lock()
        self._cap = self._open(index)

    @staticmethod
    def _open(index: int) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise MediaAccessError(f"Cannot open camera {index}")
        return cap

    def read(self) -> Optional[np.ndarray]:
        """Latest frame, or None when the camera has nothing yet."""
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def switch(self, index: int) -> None:
        """Open the new camera first so a failure leaves the current one running."""
        new_cap = self._open(index)
        with self._lock:
            old, self._cap = self._cap, new_cap
            self.index = index
        if old is not None:
            old.release()
        logger.info("📷 Switched to camera %d", index)

    def release(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()


class MicrophoneSource:
    """sounddevice input stream delivering float32 mono blocks to a callback."""

    def __init__(self, sample_rate: int = 16000, block_size: int = 4096):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._stream: Optional[Any] = None

    def start(self, on_block: Callable[[np.ndarray], None]) -> None:
        sd = _sounddevice()

        def _callback(indata, frames, time_info, status):
            if status:
                logger.debug("Mic status: %s", status)
            on_block(indata[:, 0].copy())

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                callback=_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            self._stream = None
            raise MediaAccessError(f"Cannot open microphone: {e}") from e

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        import sounddevice as sd

        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.debug("Mic close error: %s", e)


def open_media_devices(
    camera_index: int = 0,
    sample_rate: int = 16000,
    block_size: int = 4096
) -> Tuple[CameraSource, MicrophoneSource]:
    """
    Acquire the camera; the microphone stream is created but only started by
    the audio pump. Raises MediaAccessError.
    """
    sd = _sounddevice()

    try:
        camera = CameraSource(camera_index)
    except cv2.error as e:
        raise MediaAccessError(f"Cannot open camera {camera_index}: {e}") from e

    try:
        sd.check_input_settings(channels=1, samplerate=sample_rate, dtype="float32")
    except (sd.PortAudioError, ValueError) as e:
        camera.release()
        raise MediaAccessError(f"No usable microphone: {e}") from e

    logger.info("🎥 Camera %d and microphone ready", camera_index)
    return camera, MicrophoneSource(sample_rate, block_size)

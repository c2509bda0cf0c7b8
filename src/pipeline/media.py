"""
media.py
Encoding helpers between capture devices, the live channel and playback.

- Outbound audio : float32 [-1, 1] samples -> 16-bit little-endian PCM @ 16 kHz
- Outbound video : BGR frame -> JPEG bytes at a fixed quality
- Inbound audio  : 16-bit PCM @ 24 kHz -> float32 samples + duration
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import cv2
import numpy as np

AUDIO_MIME_TYPE = "audio/pcm;rate=16000"
VIDEO_MIME_TYPE = "image/jpeg"


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaChunk:
    kind: MediaKind
    data: bytes
    mime_type: str
    captured_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


def encode_pcm16(samples: np.ndarray) -> bytes:
    """Clip float samples to [-1, 1] and pack as int16 little-endian."""
    flat = np.asarray(samples, dtype=np.float32).reshape(-1)
    clipped = np.clip(flat, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def audio_chunk(samples: np.ndarray, mime_type: str = AUDIO_MIME_TYPE) -> MediaChunk:
    return MediaChunk(MediaKind.AUDIO, encode_pcm16(samples), mime_type)


def encode_jpeg(frame: np.ndarray, quality: int = 80) -> Optional[bytes]:
    """Returns None when OpenCV refuses the frame."""
    if frame is None or frame.size == 0:
        return None
    ok, enc = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        return None
    return enc.tobytes()


def video_chunk(frame: np.ndarray, quality: int = 80) -> Optional[MediaChunk]:
    data = encode_jpeg(frame, quality)
    if data is None:
        return None
    return MediaChunk(MediaKind.VIDEO, data, VIDEO_MIME_TYPE)


def decode_pcm16(data: bytes, sample_rate: int = 24000) -> DecodedAudio:
    """
    Inbound PCM -> float32 mono samples.
    Raises ValueError on empty or truncated (odd-length) payloads.
    """
    if not data:
        raise ValueError("empty audio payload")
    if len(data) % 2:
        raise ValueError(f"truncated PCM16 payload ({len(data)} bytes)")

    pcm = np.frombuffer(data, dtype="<i2")
    return DecodedAudio(pcm.astype(np.float32) / 32768.0, sample_rate)

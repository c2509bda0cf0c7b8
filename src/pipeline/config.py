"""
Live session configuration (environment variables or .env)
"""
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from violations.fines import FINE_RATES
from violations.notify import DEFAULT_LOCATION


class LiveSettings(BaseSettings):
    """Live pipeline settings from environment variables"""

    # Gemini Live
    gemini_api_key: Optional[str] = None
    model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    connect_timeout_s: float = 15.0

    # Video
    frame_rate: float = 5.0
    jpeg_quality: int = 80
    camera_index: int = 0
    alt_camera_index: int = 1

    # Audio
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    audio_block_size: int = 4096

    # Violations
    dedup_window_hours: float = 2.0
    fine_rates: Dict[str, int] = Field(default_factory=lambda: dict(FINE_RATES))
    location: str = DEFAULT_LOCATION

    # UI timers
    analyzing_clear_delay_s: float = 0.5
    violation_display_s: float = 4.0

    # Record store: backend URL, or a local JSON store when unset
    record_store_url: Optional[str] = None
    violation_root: str = "output/violations"
    fallback_log: str = "output/logs/fallback.json"

    # Cloudinary
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None

    # EmailJS
    emailjs_service_id: Optional[str] = None
    emailjs_template_id: Optional[str] = None
    emailjs_public_key: Optional[str] = None
    emailjs_private_key: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


@lru_cache()
def get_live_settings() -> LiveSettings:
    """Cached settings instance"""
    return LiveSettings()

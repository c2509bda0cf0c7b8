"""
Configuration management using environment variables
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    """Record backend settings from environment variables"""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # API Info
    api_title: str = "Traffic Sentinel Record Store"
    api_version: str = "1.0.0"
    api_description: str = "Violation record store for the live traffic violation pipeline"

    # Paths
    violation_root: str = "output/violations"
    logs_dir: str = "output/logs"
    fallback_log: str = "output/logs/fallback.json"

    # Deduplication
    dedup_window_hours: float = 2.0

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # EmailJS (resend from dashboard)
    emailjs_service_id: Optional[str] = None
    emailjs_template_id: Optional[str] = None
    emailjs_public_key: Optional[str] = None
    emailjs_private_key: Optional[str] = None

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list"""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()

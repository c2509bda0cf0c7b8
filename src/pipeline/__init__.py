"""
pipeline package

Live monitoring session against the Gemini Live API:
- Camera + microphone capture and media encoding (devices.py, media.py, pumps.py)
- Live channel with the report_violation tool (channel.py)
- Inbound routing and gapless audio playback (events.py, playback.py)
- Session lifecycle and UI-facing state (session.py, state.py)
- Console runner (run_live.py)
"""

from .config import LiveSettings, get_live_settings
from .errors import ConfigError, MediaAccessError, RemoteError
from .state import SessionState, SessionView

__all__ = [
    "LiveSettings",
    "get_live_settings",
    "ConfigError",
    "MediaAccessError",
    "RemoteError",
    "SessionState",
    "SessionView",
]

"""
state.py
Shared session state: lifecycle enum, cancellation token and the UI-facing view.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from violations.event_schema import ViolationRecord

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class CancellationToken:
    """Level-triggered; safe to check from the audio thread and worker threads."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


@dataclass
class SessionView:
    status: SessionState = SessionState.DISCONNECTED
    error_message: Optional[str] = None
    current_violation: Optional[ViolationRecord] = None
    is_analyzing: bool = False
    camera_index: int = 0
    _listeners: List[Callable[["SessionView"], None]] = field(default_factory=list, repr=False, compare=False)

    def subscribe(self, listener: Callable[["SessionView"], None]) -> None:
        self._listeners.append(listener)

    def update(self, **changes) -> None:
        for key, value in changes.items():
            if key.startswith("_") or not hasattr(self, key):
                raise AttributeError(f"SessionView has no field {key!r}")
            setattr(self, key, value)

        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("SessionView listener failed")

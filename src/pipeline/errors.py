"""
Errors surfaced by the live session controller.

All three are fatal to connect(); the caller decides whether to try again.
"""


class ConfigError(RuntimeError):
    """A required credential (e.g. the Gemini API key) is missing."""


class MediaAccessError(RuntimeError):
    """Camera or microphone could not be acquired."""


class RemoteError(RuntimeError):
    """The live channel handshake failed or timed out."""

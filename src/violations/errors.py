"""
errors.py
Exceptions raised inside the violation layer.

None of these are fatal to a live session:
- MalformedCandidateError -> candidate is dropped and logged
- UploadFailure           -> evidence URL degrades to a placeholder
- NotifyFailure           -> notification result degrades to False
- RecordStoreError        -> record is not written, no UI update
"""


class MalformedCandidateError(ValueError):
    """A report flagged as detected but carrying no crime types."""


class UploadFailure(RuntimeError):
    """Evidence image could not be uploaded."""


class NotifyFailure(RuntimeError):
    """Owner notification could not be delivered."""


class RecordStoreError(RuntimeError):
    """Record store rejected or failed the write (not a duplicate)."""

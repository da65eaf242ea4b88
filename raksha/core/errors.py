"""Check-in engine errors.

Structural errors (conflict, invalid transition, not found, limits) are raised
to the caller that issued the command. Transient errors (location,
notification, persistence) are caught at the tick/monitor boundary and only
logged, so the periodic tasks keep running.
"""

from __future__ import annotations


class CheckinError(Exception):
    """Base class for check-in engine errors."""


class ConflictError(CheckinError):
    """Owner already has an open check-in session."""


class InvalidStateError(CheckinError):
    """Requested transition is not valid from the session's current status."""


class NotFoundError(CheckinError):
    """Session, contact or recording does not exist for this owner."""


class ContactLimitError(CheckinError):
    """Owner already has the maximum number of emergency contacts."""


class LocationUnavailable(CheckinError):
    """Location fetch failed or timed out. Retried on the next cycle."""


class NotificationError(CheckinError):
    """Notification gateway call failed as a whole (config or transport)."""


class NotificationPartialFailure(CheckinError):
    """Some contacts could not be reached. Does not fail the tick."""

    def __init__(self, failed: list[str], delivered: int, total: int) -> None:
        super().__init__(f"{len(failed)} of {total} contacts unreachable: {', '.join(failed)}")
        self.failed = failed
        self.delivered = delivered
        self.total = total


class PersistenceError(CheckinError):
    """Store unreachable or write failed. Tick skipped, retried next cycle."""


class RecordingError(CheckinError):
    """Evidence recording could not be written or finalized."""

"""SQLAlchemy models."""

from __future__ import annotations

from raksha.models.checkin_session import CheckinSession
from raksha.models.contact import Contact
from raksha.models.location_log import LocationLog
from raksha.models.recording import Recording
from raksha.models.sos_alert import SosAlert
from raksha.models.user import User

__all__ = [
    "User",
    "Contact",
    "CheckinSession",
    "LocationLog",
    "Recording",
    "SosAlert",
]

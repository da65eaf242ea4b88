"""SOS alert model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Double, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from raksha.db.base import Base
from raksha.db.types import UTCDateTime


class SosAlert(Base):
    """One-shot emergency alert raised by the owner, with the position it sent."""

    __tablename__ = "sos_alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    # Check-in that was open when the alert went out, if any
    session_id: Mapped[int | None] = mapped_column(ForeignKey("checkin_sessions.id", ondelete="SET NULL"), nullable=True)
    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)
    accuracy_m: Mapped[float | None] = mapped_column(Double, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="sent")  # sent | failed | no_contacts
    delivered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

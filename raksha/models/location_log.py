"""Location log model - append-only record of broadcast positions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Double, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from raksha.db.base import Base
from raksha.db.types import UTCDateTime


class LocationLog(Base):
    """Position captured by a successful tick. Never updated or deleted."""

    __tablename__ = "location_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("checkin_sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)
    accuracy_m: Mapped[float | None] = mapped_column(Double, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

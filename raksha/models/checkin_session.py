"""Safety check-in session model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from raksha.db.base import Base
from raksha.db.types import UTCDateTime

_OPEN = text("status IN ('active', 'escalated', 'critical')")


class CheckinSession(Base):
    """A bounded period during which the owner's location is broadcast."""

    __tablename__ = "checkin_sessions"
    __table_args__ = (
        # At most one open session per owner, enforced at write time
        Index(
            "uq_checkin_sessions_open_owner",
            "owner_id",
            unique=True,
            postgresql_where=_OPEN,
            sqlite_where=_OPEN,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active | escalated | critical | completed | archived
    check_in_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    deactivation_limit_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    recording_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    missed_checkins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_update_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    marked_safe_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Edge timestamps; an alert whose *_sent_at is still null is re-sent by the monitor
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    escalation_alert_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    critical_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    critical_alert_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

"""SOS alert persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raksha.core.errors import PersistenceError
from raksha.models.sos_alert import SosAlert
from raksha.services.location_provider import PositionFix


def create_sos_alert(
    db: Session,
    owner_id: int,
    session_id: int | None,
    fix: PositionFix,
    status: str,
    delivered: int,
    total: int,
    now: datetime,
) -> SosAlert:
    alert = SosAlert(
        owner_id=owner_id,
        session_id=session_id,
        latitude=fix.latitude,
        longitude=fix.longitude,
        accuracy_m=fix.accuracy_m,
        status=status,
        delivered=delivered,
        total=total,
        created_at=now,
    )
    try:
        db.add(alert)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"save SOS alert failed: {exc.__class__.__name__}") from exc
    db.refresh(alert)
    return alert


def list_my_sos(db: Session, owner_id: int, limit: int = 20) -> list[SosAlert]:
    """Owner's SOS alerts, newest first."""
    result = db.execute(
        select(SosAlert)
        .where(SosAlert.owner_id == owner_id)
        .order_by(SosAlert.created_at.desc(), SosAlert.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())

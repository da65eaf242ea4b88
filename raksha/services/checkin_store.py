"""Persistence store for check-in sessions and location logs.

The ticker and the monitor never share in-memory session objects. Each unit
of work opens its own DB session, reads a fresh snapshot through these
functions and writes back with conditional UPDATEs, so a transition only
happens if the row is still in the expected status.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from raksha.core.checkin_policies import ARCHIVABLE_STATUSES, OPEN_STATUSES
from raksha.core.errors import ConflictError, NotFoundError, PersistenceError
from raksha.models.checkin_session import CheckinSession
from raksha.models.location_log import LocationLog
from raksha.services.location_provider import PositionFix

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(db: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise database failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"{action} failed: {exc.__class__.__name__}") from exc


def find_open_session(db: Session, owner_id: int) -> CheckinSession | None:
    """The owner's active/escalated/critical session, if any."""
    with _store_errors(db, "find open session"):
        return db.execute(
            select(CheckinSession).where(
                CheckinSession.owner_id == owner_id,
                CheckinSession.status.in_(OPEN_STATUSES),
            )
        ).scalar_one_or_none()


def create_session(
    db: Session,
    owner_id: int,
    interval_seconds: int,
    deactivation_limit_seconds: int,
    recording_enabled: bool,
    now: datetime,
) -> CheckinSession:
    """Insert a new active session.

    The pre-check gives a clean error in the common case; the partial unique
    index catches the race where two starts pass the pre-check together.
    """
    if find_open_session(db, owner_id) is not None:
        raise ConflictError("A safety check-in is already running")

    session = CheckinSession(
        owner_id=owner_id,
        status="active",
        check_in_interval_seconds=interval_seconds,
        deactivation_limit_seconds=deactivation_limit_seconds,
        recording_enabled=recording_enabled,
        missed_checkins=0,
        created_at=now,
        last_update_at=now,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A safety check-in is already running") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"create session failed: {exc.__class__.__name__}") from exc
    db.refresh(session)
    return session


def get_session(db: Session, session_id: int) -> CheckinSession | None:
    with _store_errors(db, "load session"):
        return db.get(CheckinSession, session_id)


def get_owned_session(db: Session, session_id: int, owner_id: int) -> CheckinSession:
    """Load a session, hiding sessions that belong to someone else."""
    session = get_session(db, session_id)
    if session is None or session.owner_id != owner_id:
        raise NotFoundError("Check-in not found")
    return session


def list_sessions(db: Session, owner_id: int, limit: int = 20) -> list[CheckinSession]:
    """Owner's sessions, newest first."""
    with _store_errors(db, "list sessions"):
        result = db.execute(
            select(CheckinSession)
            .where(CheckinSession.owner_id == owner_id)
            .order_by(CheckinSession.created_at.desc(), CheckinSession.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


def list_open_sessions(db: Session) -> list[CheckinSession]:
    with _store_errors(db, "list open sessions"):
        result = db.execute(
            select(CheckinSession)
            .where(CheckinSession.status.in_(OPEN_STATUSES))
            .order_by(CheckinSession.id)
        )
        return list(result.scalars().all())


def transition(
    db: Session,
    session_id: int,
    from_statuses: tuple[str, ...],
    to_status: str,
    **values: Any,
) -> bool:
    """Compare-and-set status change. Returns True only for the caller that made it."""
    with _store_errors(db, f"transition to {to_status}"):
        result = db.execute(
            update(CheckinSession)
            .where(
                CheckinSession.id == session_id,
                CheckinSession.status.in_(from_statuses),
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return result.rowcount == 1


def complete_session(db: Session, session_id: int, now: datetime) -> bool:
    return transition(db, session_id, OPEN_STATUSES, "completed", marked_safe_at=now)


def record_broadcast(db: Session, session_id: int, now: datetime) -> bool:
    """Atomic last-update refresh after a successful tick.

    Clears missed check-ins and resets an escalation back to active. A
    critical session stays critical; only mark-safe leaves that state.
    """
    with _store_errors(db, "refresh last update"):
        result = db.execute(
            update(CheckinSession)
            .where(
                CheckinSession.id == session_id,
                CheckinSession.status.in_(OPEN_STATUSES),
            )
            .values(
                last_update_at=now,
                missed_checkins=0,
                status=case(
                    (CheckinSession.status == "escalated", "active"),
                    else_=CheckinSession.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return result.rowcount == 1


def record_missed_checkin(db: Session, session_id: int) -> bool:
    with _store_errors(db, "record missed check-in"):
        result = db.execute(
            update(CheckinSession)
            .where(
                CheckinSession.id == session_id,
                CheckinSession.status.in_(OPEN_STATUSES),
            )
            .values(missed_checkins=CheckinSession.missed_checkins + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return result.rowcount == 1


def mark_alert_sent(db: Session, session_id: int, column: str, now: datetime) -> None:
    """Record delivery of the escalation or critical alert."""
    if column not in ("escalation_alert_sent_at", "critical_alert_sent_at"):
        raise ValueError(f"Unknown alert column: {column}")
    with _store_errors(db, "mark alert sent"):
        db.execute(
            update(CheckinSession)
            .where(CheckinSession.id == session_id)
            .values({column: now})
            .execution_options(synchronize_session=False)
        )
        db.commit()


def archive_abandoned(db: Session, now: datetime, abandon_after_seconds: int) -> list[int]:
    """Archive active/escalated sessions with no successful tick for abandon_after_seconds.

    Critical sessions are never archived, and neither is a session whose
    deactivation limit has already passed: the monitor turns that one critical
    and alerts the contacts first.
    """
    cutoff = now - timedelta(seconds=abandon_after_seconds)
    with _store_errors(db, "find abandoned sessions"):
        stale = db.execute(
            select(
                CheckinSession.id,
                CheckinSession.created_at,
                CheckinSession.deactivation_limit_seconds,
            ).where(
                CheckinSession.status.in_(ARCHIVABLE_STATUSES),
                CheckinSession.last_update_at < cutoff,
            )
        ).all()
    archived = []
    for session_id, created_at, limit_seconds in stale:
        if now - created_at > timedelta(seconds=limit_seconds):
            continue
        if transition(db, session_id, ARCHIVABLE_STATUSES, "archived", archived_at=now):
            archived.append(session_id)
    if archived:
        logger.info("Archived abandoned check-ins: %s", archived)
    return archived


def append_location(db: Session, session_id: int, owner_id: int, fix: PositionFix) -> LocationLog:
    """Append a location log row. Rows are never updated afterwards."""
    entry = LocationLog(
        session_id=session_id,
        owner_id=owner_id,
        latitude=fix.latitude,
        longitude=fix.longitude,
        accuracy_m=fix.accuracy_m,
        captured_at=fix.captured_at,
    )
    with _store_errors(db, "append location"):
        db.add(entry)
        db.commit()
        db.refresh(entry)
    return entry


def list_locations(db: Session, session_id: int) -> list[LocationLog]:
    """Session's location trail in capture order."""
    with _store_errors(db, "list locations"):
        result = db.execute(
            select(LocationLog)
            .where(LocationLog.session_id == session_id)
            .order_by(LocationLog.captured_at, LocationLog.id)
        )
        return list(result.scalars().all())


def last_location(db: Session, session_id: int) -> LocationLog | None:
    with _store_errors(db, "load last location"):
        return db.execute(
            select(LocationLog)
            .where(LocationLog.session_id == session_id)
            .order_by(LocationLog.captured_at.desc(), LocationLog.id.desc())
            .limit(1)
        ).scalar_one_or_none()

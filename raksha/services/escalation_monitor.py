"""Escalation monitor for open check-in sessions.

Runs on its own fixed period, independent of the check-in interval, and only
trusts the persisted record. Each evaluation checks, in this order:

1. deactivation limit: time since start > limit -> critical
2. abandonment: no successful tick for ``abandon_after_seconds`` -> archived
   (active or escalated only; a critical session waits for mark-safe)
3. missed check-ins: time since last update > 2 x interval -> escalated

Transitions are compare-and-set writes, so only the evaluation that crosses
an edge acts on it. The alert belonging to an edge is sent once; if sending
fails it stays pending and the next evaluation retries it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from raksha.core.checkin_policies import ARCHIVABLE_STATUSES, ESCALATION_INTERVAL_MULTIPLIER, OPEN_STATUSES
from raksha.core.clock import Clock, utcnow
from raksha.core.errors import LocationUnavailable, NotificationError, PersistenceError
from raksha.core.ws_manager import ConnectionManager
from raksha.services import checkin_store
from raksha.services.broadcast import broadcast_position, fetch_position, load_recipients
from raksha.services.location_provider import LocationProvider, PositionFix
from raksha.services.notification_gateway import NotificationGateway, Recipient

logger = logging.getLogger(__name__)


@dataclass
class MonitorOutcome:
    """What one evaluation did."""

    session_id: int
    transitions: list[str] = field(default_factory=list)
    alerts_sent: list[str] = field(default_factory=list)
    stop: bool = False


@dataclass(frozen=True)
class _Snapshot:
    owner_id: int
    status: str
    interval_seconds: int
    deactivation_limit_seconds: int
    created_at: datetime
    last_update_at: datetime
    escalation_alert_sent_at: datetime | None
    critical_alert_sent_at: datetime | None


class EscalationMonitor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        location_provider: LocationProvider,
        gateway: NotificationGateway,
        events: ConnectionManager,
        clock: Clock = utcnow,
        location_timeout_seconds: float = 15.0,
        abandon_after_seconds: int = 60 * 60 * 24,
    ) -> None:
        self._session_factory = session_factory
        self._location = location_provider
        self._gateway = gateway
        self._events = events
        self._clock = clock
        self._location_timeout = location_timeout_seconds
        self._abandon_after = abandon_after_seconds

    async def evaluate(self, session_id: int) -> MonitorOutcome:
        outcome = MonitorOutcome(session_id=session_id)
        now = self._clock()
        try:
            with self._session_factory() as db:
                session = checkin_store.get_session(db, session_id)
                if session is None or session.status not in OPEN_STATUSES:
                    outcome.stop = True
                    return outcome
                snap = _Snapshot(
                    owner_id=session.owner_id,
                    status=session.status,
                    interval_seconds=session.check_in_interval_seconds,
                    deactivation_limit_seconds=session.deactivation_limit_seconds,
                    created_at=session.created_at,
                    last_update_at=session.last_update_at,
                    escalation_alert_sent_at=session.escalation_alert_sent_at,
                    critical_alert_sent_at=session.critical_alert_sent_at,
                )
                status = self._apply_transitions(db, session_id, snap, now, outcome)
                if status == "archived":
                    self._location.forget(snap.owner_id)
                    outcome.stop = True
                    return outcome
                sender_name, recipients = load_recipients(db, snap.owner_id)
        except PersistenceError as exc:
            logger.warning("Monitor skipped for session %s: %s", session_id, exc)
            return outcome

        for edge in outcome.transitions:
            await self._events.send_to_user(snap.owner_id, f"checkin.{edge}", {"session_id": session_id, "at": now.isoformat()})

        pending = self._pending_alert(snap, status, outcome)
        if pending is not None:
            await self._deliver_alert(session_id, snap.owner_id, pending, sender_name, recipients, outcome)
        return outcome

    def _apply_transitions(self, db: Session, session_id: int, snap: _Snapshot, now: datetime, outcome: MonitorOutcome) -> str:
        """Run the checks in their fixed order; returns the resulting status."""
        status = snap.status
        since_update = (now - snap.last_update_at).total_seconds()
        elapsed = (now - snap.created_at).total_seconds()

        if elapsed > snap.deactivation_limit_seconds and status in ("active", "escalated"):
            if checkin_store.transition(
                db, session_id, ("active", "escalated"), "critical", critical_at=now, critical_alert_sent_at=None
            ):
                logger.warning("Session %s critical: %.0fs elapsed > limit %ss", session_id, elapsed, snap.deactivation_limit_seconds)
                outcome.transitions.append("critical")
                status = "critical"

        if since_update > self._abandon_after and status in ARCHIVABLE_STATUSES:
            if checkin_store.transition(db, session_id, ARCHIVABLE_STATUSES, "archived", archived_at=now):
                logger.warning("Session %s archived: no check-in for %.0fs", session_id, since_update)
                outcome.transitions.append("archived")
                return "archived"

        threshold = ESCALATION_INTERVAL_MULTIPLIER * snap.interval_seconds
        if since_update > threshold and status == "active":
            if checkin_store.transition(
                db, session_id, ("active",), "escalated", escalated_at=now, escalation_alert_sent_at=None
            ):
                logger.warning("Session %s escalated: %.0fs since last update > %ss", session_id, since_update, threshold)
                outcome.transitions.append("escalated")
                status = "escalated"

        return status

    @staticmethod
    def _pending_alert(snap: _Snapshot, status: str, outcome: MonitorOutcome) -> str | None:
        if status == "critical":
            if "critical" in outcome.transitions or snap.critical_alert_sent_at is None:
                return "critical"
            return None
        if status == "escalated":
            if "escalated" in outcome.transitions or snap.escalation_alert_sent_at is None:
                return "escalated"
        return None

    async def _deliver_alert(
        self,
        session_id: int,
        owner_id: int,
        kind: str,
        sender_name: str,
        recipients: list[Recipient],
        outcome: MonitorOutcome,
    ) -> None:
        column = "critical_alert_sent_at" if kind == "critical" else "escalation_alert_sent_at"
        if recipients:
            fix = await self._alert_position(session_id, owner_id)
            if fix is None:
                logger.warning("No position for %s alert on session %s; retrying next run", kind, session_id)
                return
            try:
                report = await broadcast_position(self._gateway, recipients, fix, sender_name, critical=True)
            except NotificationError as exc:
                logger.warning("%s alert for session %s not sent: %s", kind.capitalize(), session_id, exc)
                return
            logger.info("%s alert for session %s sent to %s/%s contacts", kind.capitalize(), session_id, report.delivered, report.total)
        else:
            logger.warning("Session %s has no contacts; %s alert has nobody to reach", session_id, kind)

        try:
            with self._session_factory() as db:
                checkin_store.mark_alert_sent(db, session_id, column, self._clock())
        except PersistenceError as exc:
            logger.warning("Could not record %s alert for session %s: %s", kind, session_id, exc)
            return
        outcome.alerts_sent.append(kind)

    async def _alert_position(self, session_id: int, owner_id: int) -> PositionFix | None:
        """Fresh position if the device answers, otherwise the last logged one."""
        try:
            return await fetch_position(self._location, owner_id, self._location_timeout)
        except LocationUnavailable as exc:
            logger.info("Alert location fetch failed for session %s: %s", session_id, exc)

        try:
            with self._session_factory() as db:
                last = checkin_store.last_location(db, session_id)
        except PersistenceError as exc:
            logger.warning("Could not load last location for session %s: %s", session_id, exc)
            return None
        if last is None:
            return None
        return PositionFix(
            latitude=last.latitude,
            longitude=last.longitude,
            accuracy_m=last.accuracy_m,
            captured_at=last.captured_at,
        )

"""Safety check-in session state machine.

    idle -> active -> {escalated, critical} -> completed
                 (abandoned open sessions) -> archived

``start`` creates the session and its timers, ``tick`` is one location
broadcast, ``mark_safe`` completes the session and ``trigger_sos`` is the
one-shot manual alert. Structural errors (ConflictError, InvalidStateError,
NotFoundError) go back to the caller; transient ones are logged inside
``tick`` and retried on the next cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from raksha.core.checkin_policies import OPEN_STATUSES, TERMINAL_STATUSES
from raksha.core.clock import Clock, utcnow
from raksha.core.config import Settings, settings as default_settings
from raksha.core.errors import (
    InvalidStateError,
    LocationUnavailable,
    NotificationError,
    PersistenceError,
    RecordingError,
)
from raksha.core.ws_manager import ConnectionManager, ws_manager
from raksha.models.checkin_session import CheckinSession
from raksha.models.sos_alert import SosAlert
from raksha.services import checkin_store, sos_service
from raksha.services.broadcast import broadcast_position, fetch_position, load_recipients
from raksha.services.checkin_scheduler import CheckinScheduler
from raksha.services.escalation_monitor import EscalationMonitor
from raksha.services.location_provider import DeviceLocationProvider, LocationProvider, PositionFix
from raksha.services.notification_gateway import NotificationGateway, TwilioGateway
from raksha.services.recording_service import RecordingService

logger = logging.getLogger(__name__)


@dataclass
class TickOutcome:
    """Result of one broadcast tick."""

    session_id: int
    broadcast: bool = False
    delivered: int = 0
    total: int = 0
    stop: bool = False
    notification_failed: bool = False
    skipped_reason: str | None = None


class CheckinEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        location_provider: LocationProvider,
        gateway: NotificationGateway,
        recorder: RecordingService,
        events: ConnectionManager,
        clock: Clock = utcnow,
        monitor_period_seconds: float = 30.0,
        location_timeout_seconds: float = 15.0,
        abandon_after_seconds: int = 60 * 60 * 24,
        scheduler: CheckinScheduler | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.location_provider = location_provider
        self.gateway = gateway
        self.recorder = recorder
        self._events = events
        self._clock = clock
        self._location_timeout = location_timeout_seconds
        self._abandon_after = abandon_after_seconds
        self.monitor = EscalationMonitor(
            session_factory,
            location_provider,
            gateway,
            events,
            clock=clock,
            location_timeout_seconds=location_timeout_seconds,
            abandon_after_seconds=abandon_after_seconds,
        )
        self.scheduler = scheduler or CheckinScheduler(
            self.tick,
            self.monitor.evaluate,
            monitor_period_seconds,
            on_stopped=self._stop_recording,
        )

    async def start(
        self,
        owner_id: int,
        interval_seconds: int,
        deactivation_limit_seconds: int,
        recording_enabled: bool = False,
    ) -> int:
        """Create an active session and start its timers. Returns the session id."""
        if interval_seconds <= 0 or deactivation_limit_seconds <= 0:
            raise ValueError("Interval and deactivation limit must be positive")

        with self._session_factory() as db:
            session = checkin_store.create_session(
                db,
                owner_id=owner_id,
                interval_seconds=interval_seconds,
                deactivation_limit_seconds=deactivation_limit_seconds,
                recording_enabled=recording_enabled,
                now=self._clock(),
            )
            session_id = session.id

        if recording_enabled:
            try:
                self.recorder.start(session_id, owner_id)
            except RecordingError:
                logger.exception("Recording could not start for session %s", session_id)

        self.scheduler.schedule(session_id, interval_seconds)
        logger.info(
            "Check-in started: session=%s owner=%s interval=%ss limit=%ss recording=%s",
            session_id,
            owner_id,
            interval_seconds,
            deactivation_limit_seconds,
            recording_enabled,
        )
        return session_id

    async def tick(self, session_id: int) -> TickOutcome:
        """One broadcast: fetch location, log it, notify contacts, refresh last update."""
        outcome = TickOutcome(session_id=session_id)
        try:
            with self._session_factory() as db:
                session = checkin_store.get_session(db, session_id)
                if session is None or session.status not in OPEN_STATUSES:
                    outcome.stop = True
                    outcome.skipped_reason = "closed"
                    return outcome
                owner_id = session.owner_id
                sender_name, recipients = load_recipients(db, owner_id)
        except PersistenceError as exc:
            logger.warning("Tick skipped for session %s: %s", session_id, exc)
            outcome.skipped_reason = "persistence"
            return outcome

        try:
            fix = await fetch_position(self.location_provider, owner_id, self._location_timeout)
        except LocationUnavailable as exc:
            logger.info("Tick missed for session %s: %s", session_id, exc)
            self._record_miss(session_id)
            outcome.skipped_reason = "location"
            return outcome

        try:
            with self._session_factory() as db:
                checkin_store.append_location(db, session_id, owner_id, fix)
        except PersistenceError as exc:
            logger.warning("Tick skipped for session %s: %s", session_id, exc)
            outcome.skipped_reason = "persistence"
            return outcome

        if recipients:
            # The device answered, so the check-in counts even if no SMS went out
            outcome.total = len(recipients)
            try:
                report = await broadcast_position(self.gateway, recipients, fix, sender_name)
            except NotificationError as exc:
                logger.warning("Tick broadcast failed for session %s: %s", session_id, exc)
                outcome.notification_failed = True
            else:
                outcome.delivered, outcome.total = report.delivered, report.total
        else:
            logger.warning("Session %s has no emergency contacts; location logged only", session_id)

        try:
            with self._session_factory() as db:
                refreshed = checkin_store.record_broadcast(db, session_id, self._clock())
        except PersistenceError as exc:
            logger.warning("Last update not refreshed for session %s: %s", session_id, exc)
            outcome.skipped_reason = "persistence"
            return outcome

        if not refreshed:
            # Marked safe or archived while the broadcast was in flight
            outcome.stop = True
            outcome.skipped_reason = "closed"
            return outcome

        outcome.broadcast = True
        await self._events.send_to_user(
            owner_id,
            "checkin.tick",
            {"session_id": session_id, "delivered": outcome.delivered, "total": outcome.total},
        )
        return outcome

    async def mark_safe(self, session_id: int, owner_id: int) -> CheckinSession:
        """Complete the session. Timers and recording are released on every path."""
        with self._session_factory() as db:
            session = checkin_store.get_owned_session(db, session_id, owner_id)
            try:
                if session.status in TERMINAL_STATUSES:
                    raise InvalidStateError(f"Check-in is already {session.status}")
                if not checkin_store.complete_session(db, session_id, self._clock()):
                    db.refresh(session)
                    raise InvalidStateError(f"Check-in is already {session.status}")
                db.refresh(session)
            finally:
                await self._release(session_id)

        self.location_provider.forget(owner_id)
        logger.info("Check-in completed: session=%s owner=%s", session_id, owner_id)
        await self._events.send_to_user(owner_id, "checkin.completed", {"session_id": session_id})
        return session

    async def trigger_sos(self, owner_id: int, fix: PositionFix | None = None) -> SosAlert:
        """Send an immediate emergency alert with the owner's position to every contact.

        Uses the device-supplied fix when given, otherwise asks the device.
        LocationUnavailable goes back to the caller; a gateway failure is
        stored on the alert as ``failed``.
        """
        if fix is None:
            fix = await fetch_position(self.location_provider, owner_id, self._location_timeout)

        with self._session_factory() as db:
            sender_name, recipients = load_recipients(db, owner_id)
            open_session = checkin_store.find_open_session(db, owner_id)
            session_id = open_session.id if open_session else None

        delivered, total = 0, len(recipients)
        if not recipients:
            logger.warning("SOS from owner %s has no emergency contacts to reach", owner_id)
            alert_status = "no_contacts"
        else:
            try:
                report = await broadcast_position(self.gateway, recipients, fix, sender_name, critical=True)
            except NotificationError as exc:
                logger.error("SOS from owner %s not delivered: %s", owner_id, exc)
                alert_status = "failed"
            else:
                delivered, total = report.delivered, report.total
                alert_status = "sent"

        with self._session_factory() as db:
            alert = sos_service.create_sos_alert(
                db, owner_id, session_id, fix, alert_status, delivered, total, self._clock()
            )
        logger.warning("SOS raised: owner=%s status=%s delivered=%s/%s", owner_id, alert_status, delivered, total)
        await self._events.send_to_user(
            owner_id, "sos.sent", {"sos_id": alert.id, "status": alert_status, "delivered": delivered, "total": total}
        )
        return alert

    async def resume_open_sessions(self) -> list[int]:
        """Archive abandoned sessions, then restart timers for the remaining open ones."""
        now = self._clock()
        with self._session_factory() as db:
            checkin_store.archive_abandoned(db, now, self._abandon_after)
            plan = [(s.id, s.check_in_interval_seconds) for s in checkin_store.list_open_sessions(db)]
        for session_id, interval in plan:
            self.scheduler.schedule(session_id, interval)
        if plan:
            logger.info("Resumed %s open check-in(s)", len(plan))
        return [session_id for session_id, _ in plan]

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        self.recorder.stop_all()
        await self.gateway.aclose()

    async def _release(self, session_id: int) -> None:
        try:
            await self.scheduler.cancel(session_id)
        finally:
            self._stop_recording(session_id)

    def _stop_recording(self, session_id: int) -> None:
        try:
            self.recorder.stop(session_id)
        except RecordingError:
            logger.exception("Recording for session %s could not be finalized", session_id)

    def _record_miss(self, session_id: int) -> None:
        try:
            with self._session_factory() as db:
                checkin_store.record_missed_checkin(db, session_id)
        except PersistenceError as exc:
            logger.warning("Missed check-in not recorded for session %s: %s", session_id, exc)


def build_engine(session_factory: Callable[[], Session], config: Settings = default_settings) -> CheckinEngine:
    """Wire the engine with the production collaborators."""
    return CheckinEngine(
        session_factory,
        location_provider=DeviceLocationProvider(ws_manager, max_age_seconds=config.location_max_age_seconds),
        gateway=TwilioGateway(
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            from_number=config.twilio_from_number,
            api_base=config.twilio_api_base,
            timeout_seconds=config.notification_timeout_seconds,
        ),
        recorder=RecordingService(session_factory, config.recordings_dir),
        events=ws_manager,
        monitor_period_seconds=config.monitor_period_seconds,
        location_timeout_seconds=config.location_timeout_seconds,
        abandon_after_seconds=config.abandon_after_seconds,
    )

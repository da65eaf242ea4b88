"""Check-in engine: start, tick, mark safe and resume."""

import asyncio

import pytest

from raksha.core.config import settings
from raksha.core.errors import ConflictError, InvalidStateError, LocationUnavailable, NotFoundError
from raksha.services import checkin_store
from raksha.services.checkin_engine import build_engine
from raksha.services.location_provider import DeviceLocationProvider
from raksha.services.notification_gateway import TwilioGateway
from raksha.services.recording_service import list_recordings

PHONES = ("+14155550101", "+14155550102")


def test_start_creates_active_session_and_schedules_timers(harness, make_user, load_session):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))

    session = load_session(session_id)
    assert session.status == "active"
    assert session.owner_id == owner
    assert session.missed_checkins == 0
    assert session.created_at == harness.clock.now
    assert session.last_update_at == session.created_at
    assert harness.scheduler.scheduled[session_id] == 600


def test_second_start_while_open_conflicts(harness, make_user):
    owner = make_user()
    first = asyncio.run(harness.engine.start(owner, 600, 3600))

    with pytest.raises(ConflictError):
        asyncio.run(harness.engine.start(owner, 300, 1800))

    asyncio.run(harness.engine.mark_safe(first, owner))
    second = asyncio.run(harness.engine.start(owner, 300, 1800))
    assert second != first


def test_escalated_session_still_blocks_new_start(harness, make_user, session_factory):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    with session_factory() as db:
        checkin_store.transition(db, session_id, ("active",), "escalated")

    with pytest.raises(ConflictError):
        asyncio.run(harness.engine.start(owner, 600, 3600))


def test_start_rejects_non_positive_durations(harness, make_user):
    owner = make_user()
    with pytest.raises(ValueError):
        asyncio.run(harness.engine.start(owner, 0, 3600))


def test_tick_logs_location_and_notifies_every_contact(harness, make_user, load_session, session_factory):
    owner = make_user(full_name="Meera", phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    harness.clock.advance(600)

    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.broadcast is True
    assert (outcome.delivered, outcome.total) == (2, 2)
    assert len(harness.gateway.sent) == 1
    message = harness.gateway.sent[0]
    assert message.phones == list(PHONES)
    assert message.sender_name == "Meera"
    assert message.critical is False

    with session_factory() as db:
        trail = checkin_store.list_locations(db, session_id)
    assert len(trail) == 1
    assert (trail[0].latitude, trail[0].longitude) == harness.location.position
    assert trail[0].captured_at == harness.clock.now

    assert load_session(session_id).last_update_at == harness.clock.now
    assert "checkin.tick" in harness.events.names()


def test_location_failure_counts_as_missed_checkin(harness, make_user, load_session):
    owner = make_user(phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    started = harness.clock.now
    harness.location.error = LocationUnavailable("gps off")
    harness.clock.advance(600)

    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.broadcast is False
    assert outcome.skipped_reason == "location"
    assert harness.gateway.sent == []
    session = load_session(session_id)
    assert session.missed_checkins == 1
    assert session.last_update_at == started


def test_gateway_failure_still_counts_as_checkin(harness, make_user, load_session, session_factory):
    owner = make_user(phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    with session_factory() as db:
        checkin_store.record_missed_checkin(db, session_id)
        checkin_store.transition(db, session_id, ("active",), "escalated", escalated_at=harness.clock.now)
    harness.gateway.fail = True
    harness.clock.advance(600)

    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.broadcast is True
    assert outcome.notification_failed is True
    assert (outcome.delivered, outcome.total) == (0, 2)
    session = load_session(session_id)
    assert session.status == "active"
    assert session.missed_checkins == 0
    assert session.last_update_at == harness.clock.now
    with session_factory() as db:
        assert len(checkin_store.list_locations(db, session_id)) == 1


def test_tick_without_contacts_logs_location_only(harness, make_user, load_session):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    harness.clock.advance(600)

    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.broadcast is True
    assert outcome.total == 0
    assert harness.gateway.sent == []
    assert load_session(session_id).last_update_at == harness.clock.now


def test_successful_tick_recovers_escalated_session(harness, make_user, load_session, session_factory):
    owner = make_user(phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    harness.location.error = LocationUnavailable("tunnel")
    asyncio.run(harness.engine.tick(session_id))
    with session_factory() as db:
        checkin_store.transition(db, session_id, ("active",), "escalated", escalated_at=harness.clock.now)

    harness.location.error = None
    harness.clock.advance(1300)
    asyncio.run(harness.engine.tick(session_id))

    session = load_session(session_id)
    assert session.status == "active"
    assert session.missed_checkins == 0
    assert session.last_update_at == harness.clock.now


def test_successful_tick_keeps_critical_session_critical(harness, make_user, load_session, session_factory):
    owner = make_user(phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 600))
    with session_factory() as db:
        checkin_store.transition(db, session_id, ("active",), "critical", critical_at=harness.clock.now)

    harness.clock.advance(600)
    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.broadcast is True
    session = load_session(session_id)
    assert session.status == "critical"
    assert session.last_update_at == harness.clock.now


def test_tick_on_closed_session_stops_the_ticker(harness, make_user):
    owner = make_user(phones=PHONES)
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    asyncio.run(harness.engine.mark_safe(session_id, owner))

    outcome = asyncio.run(harness.engine.tick(session_id))

    assert outcome.stop is True
    assert outcome.broadcast is False
    assert harness.gateway.sent == []


def test_mark_safe_completes_and_releases_timers(harness, make_user):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    harness.clock.advance(120)

    session = asyncio.run(harness.engine.mark_safe(session_id, owner))

    assert session.status == "completed"
    assert session.marked_safe_at == harness.clock.now
    assert session_id in harness.scheduler.cancelled
    assert not harness.scheduler.is_scheduled(session_id)
    assert (owner, "checkin.completed", {"session_id": session_id}) in harness.events.sent
    assert harness.location.forgotten == [owner]


def test_mark_safe_twice_is_invalid(harness, make_user):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))
    asyncio.run(harness.engine.mark_safe(session_id, owner))

    with pytest.raises(InvalidStateError):
        asyncio.run(harness.engine.mark_safe(session_id, owner))


def test_mark_safe_on_someone_elses_session_is_not_found(harness, make_user):
    owner = make_user()
    stranger = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600))

    with pytest.raises(NotFoundError):
        asyncio.run(harness.engine.mark_safe(session_id, stranger))
    assert harness.scheduler.is_scheduled(session_id)


def test_mark_safe_from_critical(harness, make_user, load_session, session_factory):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 600))
    with session_factory() as db:
        checkin_store.transition(db, session_id, ("active",), "critical", critical_at=harness.clock.now)

    asyncio.run(harness.engine.mark_safe(session_id, owner))

    assert load_session(session_id).status == "completed"


def test_recording_is_finalized_when_marked_safe(harness, make_user, session_factory):
    owner = make_user()
    session_id = asyncio.run(harness.engine.start(owner, 600, 3600, recording_enabled=True))
    assert harness.engine.recorder.is_recording(session_id)
    harness.engine.recorder.append(session_id, b"chunk-1")
    harness.engine.recorder.append(session_id, b"chunk-2")

    asyncio.run(harness.engine.mark_safe(session_id, owner))

    assert not harness.engine.recorder.is_recording(session_id)
    with session_factory() as db:
        recordings = list_recordings(db, session_id)
    assert len(recordings) == 1
    assert recordings[0].size_bytes == len(b"chunk-1chunk-2")


def test_resume_archives_abandoned_and_reschedules_the_rest(harness_factory, make_user, load_session, session_factory):
    harness = harness_factory(abandon_after_seconds=3600)
    stale_owner = make_user()
    critical_owner = make_user()
    fresh_owner = make_user()
    stale = asyncio.run(harness.engine.start(stale_owner, 600, 60 * 60 * 24))
    critical = asyncio.run(harness.engine.start(critical_owner, 600, 60 * 60 * 24))
    with session_factory() as db:
        checkin_store.transition(db, critical, ("active",), "critical", critical_at=harness.clock.now)
    harness.clock.advance(3601)
    fresh = asyncio.run(harness.engine.start(fresh_owner, 600, 3600))
    harness.scheduler.scheduled.clear()

    resumed = asyncio.run(harness.engine.resume_open_sessions())

    assert fresh in resumed
    assert critical in resumed
    assert stale not in resumed
    assert harness.scheduler.is_scheduled(fresh)
    stale_session = load_session(stale)
    assert stale_session.status == "archived"
    assert stale_session.archived_at == harness.clock.now
    assert load_session(critical).status == "critical"


def test_shutdown_closes_gateway(harness):
    asyncio.run(harness.engine.shutdown())
    assert harness.gateway.closed is True


def test_build_engine_wires_production_collaborators(monkeypatch, tmp_path, session_factory):
    monkeypatch.setattr(settings, "twilio_account_sid", "")
    monkeypatch.setattr(settings, "recordings_dir", str(tmp_path))

    checkin_engine = build_engine(session_factory, settings)

    assert isinstance(checkin_engine.location_provider, DeviceLocationProvider)
    assert isinstance(checkin_engine.gateway, TwilioGateway)
    assert checkin_engine.gateway.configured is False
    assert checkin_engine.scheduler.scheduled_sessions == []
    asyncio.run(checkin_engine.shutdown())

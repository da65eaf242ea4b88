"""Safety check-in API tests."""


def _me(client, headers):
    return client.get("/auth/me", headers=headers).json()["id"]


def test_start_checkin_defaults(client, signup, api_engine):
    headers = signup()
    r = client.post("/checkins", headers=headers, json={"check_in_interval_seconds": 300})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "active"
    assert body["check_in_interval_seconds"] == 300
    assert body["deactivation_limit_seconds"] == 1800
    assert body["missed_checkins"] == 0
    assert api_engine.scheduler.is_scheduled(body["id"])


def test_second_start_conflicts(client, signup):
    headers = signup()
    assert client.post("/checkins", headers=headers, json={}).status_code == 200
    r = client.post("/checkins", headers=headers, json={})
    assert r.status_code == 409


def test_interval_bounds(client, signup):
    headers = signup()
    r = client.post("/checkins", headers=headers, json={"check_in_interval_seconds": 5})
    assert r.status_code == 422


def test_active_and_history(client, signup):
    headers = signup()
    assert client.get("/checkins/active", headers=headers).status_code == 404

    session_id = client.post("/checkins", headers=headers, json={}).json()["id"]
    active = client.get("/checkins/active", headers=headers)
    assert active.status_code == 200
    assert active.json()["id"] == session_id

    history = client.get("/checkins/me", headers=headers).json()
    assert [s["id"] for s in history] == [session_id]
    assert client.get(f"/checkins/{session_id}", headers=headers).json()["status"] == "active"


def test_sessions_are_private(client, signup):
    owner = signup()
    other = signup()
    session_id = client.post("/checkins", headers=owner, json={}).json()["id"]

    assert client.get(f"/checkins/{session_id}", headers=other).status_code == 404
    assert client.post(f"/checkins/{session_id}/safe", headers=other).status_code == 404
    assert client.get(f"/checkins/{session_id}/locations", headers=other).status_code == 404


def test_mark_safe(client, signup, api_engine):
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={}).json()["id"]

    r = client.post(f"/checkins/{session_id}/safe", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert r.json()["marked_safe_at"] is not None
    assert not api_engine.scheduler.is_scheduled(session_id)
    assert client.get("/checkins/active", headers=headers).status_code == 404

    again = client.post(f"/checkins/{session_id}/safe", headers=headers)
    assert again.status_code == 409


def test_location_trail_starts_empty(client, signup):
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={}).json()["id"]
    r = client.get(f"/checkins/{session_id}/locations", headers=headers)
    assert r.status_code == 200
    assert r.json() == []


def test_report_location(client, signup, api_engine):
    headers = signup()
    r = client.post("/location", headers=headers, json={"latitude": 19.076, "longitude": 72.8777, "accuracy_m": 12})
    assert r.status_code == 202

    fix = api_engine.location_provider.latest(_me(client, headers))
    assert (fix.latitude, fix.longitude) == (19.076, 72.8777)
    assert fix.captured_at.tzinfo is not None


def test_report_location_validates_coordinates(client, signup):
    headers = signup()
    r = client.post("/location", headers=headers, json={"latitude": 120, "longitude": 0})
    assert r.status_code == 422


def test_recording_upload_and_verify(client, signup):
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={"recording_enabled": True}).json()["id"]
    upload = {**headers, "Content-Type": "audio/webm"}

    first = client.post(f"/checkins/{session_id}/recording/chunks", headers=upload, content=b"a" * 100)
    assert first.status_code == 200
    second = client.post(f"/checkins/{session_id}/recording/chunks", headers=upload, content=b"b" * 50)
    assert second.json() == {"session_id": session_id, "bytes_received": 50, "total_bytes": 150}

    client.post(f"/checkins/{session_id}/safe", headers=headers)

    recordings = client.get(f"/checkins/{session_id}/recordings", headers=headers).json()
    assert len(recordings) == 1
    assert recordings[0]["size_bytes"] == 150
    verified = client.get(f"/recordings/{recordings[0]['id']}/verify", headers=headers).json()
    assert verified["intact"] is True
    assert verified["sha256"] == recordings[0]["sha256"]


def test_recording_upload_requires_recording_enabled(client, signup):
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={}).json()["id"]
    r = client.post(
        f"/checkins/{session_id}/recording/chunks",
        headers={**headers, "Content-Type": "audio/webm"},
        content=b"data",
    )
    assert r.status_code == 400


def test_recording_upload_after_completion_conflicts(client, signup):
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={"recording_enabled": True}).json()["id"]
    client.post(f"/checkins/{session_id}/safe", headers=headers)
    r = client.post(
        f"/checkins/{session_id}/recording/chunks",
        headers={**headers, "Content-Type": "audio/webm"},
        content=b"late",
    )
    assert r.status_code == 409


def test_checkin_options(client):
    r = client.get("/checkins/options")
    assert r.status_code == 200
    assert 600 in r.json()["suggested_intervals_seconds"]
    assert r.json()["min_interval_seconds"] == 60


def test_mark_safe_forgets_the_cached_position(client, signup, api_engine):
    headers = signup()
    user_id = _me(client, headers)
    session_id = client.post("/checkins", headers=headers, json={}).json()["id"]
    client.post("/location", headers=headers, json={"latitude": 19.076, "longitude": 72.8777})
    assert api_engine.location_provider.latest(user_id) is not None

    client.post(f"/checkins/{session_id}/safe", headers=headers)

    assert api_engine.location_provider.latest(user_id) is None


def test_oversized_chunk_is_rejected(client, signup, monkeypatch):
    monkeypatch.setattr("raksha.api.checkins._MAX_CHUNK_BYTES", 16)
    headers = signup()
    session_id = client.post("/checkins", headers=headers, json={"recording_enabled": True}).json()["id"]
    upload = {**headers, "Content-Type": "audio/webm"}

    declared = client.post(f"/checkins/{session_id}/recording/chunks", headers=upload, content=b"x" * 17)
    assert declared.status_code == 413

    streamed = client.post(
        f"/checkins/{session_id}/recording/chunks",
        headers=upload,
        content=iter([b"y" * 10, b"z" * 10]),
    )
    assert streamed.status_code == 413

    fits = client.post(f"/checkins/{session_id}/recording/chunks", headers=upload, content=b"x" * 16)
    assert fits.status_code == 200
    assert fits.json()["total_bytes"] == 16


def _recorded(client, headers, payload=b"evidence-bytes"):
    session_id = client.post("/checkins", headers=headers, json={"recording_enabled": True}).json()["id"]
    client.post(
        f"/checkins/{session_id}/recording/chunks",
        headers={**headers, "Content-Type": "audio/webm"},
        content=payload,
    )
    client.post(f"/checkins/{session_id}/safe", headers=headers)
    return session_id, client.get(f"/checkins/{session_id}/recordings", headers=headers).json()[0]


def test_recording_download(client, signup):
    headers = signup()
    _, recording = _recorded(client, headers)

    r = client.get(f"/recordings/{recording['id']}/file", headers=headers)
    assert r.status_code == 200
    assert r.content == b"evidence-bytes"
    assert r.headers["content-type"].startswith("audio/webm")
    assert r.headers["x-content-sha256"] == recording["sha256"]

    assert client.get(f"/recordings/{recording['id']}/file", headers=signup()).status_code == 404


def test_recording_delete_removes_file_and_record(client, signup):
    headers = signup()
    session_id, recording = _recorded(client, headers)

    assert client.delete(f"/recordings/{recording['id']}", headers=signup()).status_code == 404

    r = client.delete(f"/recordings/{recording['id']}", headers=headers)
    assert r.status_code == 204
    assert client.get(f"/checkins/{session_id}/recordings", headers=headers).json() == []
    assert client.get(f"/recordings/{recording['id']}/file", headers=headers).status_code == 404
    assert client.delete(f"/recordings/{recording['id']}", headers=headers).status_code == 404

"""Safety check-in API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from raksha.core.checkin_policies import (
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
    OPEN_STATUSES,
    SUGGESTED_INTERVALS_SECONDS,
)
from raksha.core.deps import get_current_user, get_engine
from raksha.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    RecordingError,
)
from raksha.db.session import get_db
from raksha.models.user import User
from raksha.schemas.checkin import CheckinResponse, CheckinStart, LocationLogResponse
from raksha.schemas.recording import RecordingChunkAck, RecordingResponse
from raksha.services import checkin_store
from raksha.services.checkin_engine import CheckinEngine
from raksha.services.recording_service import list_recordings

router = APIRouter(tags=["checkins"])

_MAX_CHUNK_BYTES = 5 * 1024 * 1024


def _owned_or_404(db: Session, session_id: int, owner_id: int):
    try:
        return checkin_store.get_owned_session(db, session_id, owner_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


async def _read_chunk(request: Request) -> bytes:
    """Read the request body, stopping as soon as it passes the chunk limit."""
    too_large = HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Chunk too large")
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > _MAX_CHUNK_BYTES:
        raise too_large
    body = bytearray()
    async for part in request.stream():
        body.extend(part)
        if len(body) > _MAX_CHUNK_BYTES:
            raise too_large
    return bytes(body)


@router.post("/checkins", response_model=CheckinResponse)
async def start_checkin(
    data: CheckinStart,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    engine: CheckinEngine = Depends(get_engine),
):
    """Start a safety check-in. Only one can run per user."""
    try:
        session_id = await engine.start(
            current_user.id,
            data.check_in_interval_seconds,
            data.deactivation_limit_seconds,
            data.recording_enabled,
        )
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return checkin_store.get_session(db, session_id)


@router.get("/checkins/options")
def get_checkin_options() -> dict:
    """Interval choices offered by the client and the bounds the API accepts."""
    return {
        "suggested_intervals_seconds": list(SUGGESTED_INTERVALS_SECONDS),
        "min_interval_seconds": MIN_INTERVAL_SECONDS,
        "max_interval_seconds": MAX_INTERVAL_SECONDS,
    }


@router.get("/checkins/active", response_model=CheckinResponse)
def get_active_checkin(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The running check-in, so a reopened client can re-attach to it."""
    session = checkin_store.find_open_session(db, current_user.id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active check-in")
    return session


@router.get("/checkins/me", response_model=list[CheckinResponse])
def list_my_checkins(
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return checkin_store.list_sessions(db, current_user.id, limit)


@router.get("/checkins/{session_id}", response_model=CheckinResponse)
def get_checkin(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _owned_or_404(db, session_id, current_user.id)


@router.post("/checkins/{session_id}/safe", response_model=CheckinResponse)
async def mark_safe(
    session_id: int,
    current_user: User = Depends(get_current_user),
    engine: CheckinEngine = Depends(get_engine),
):
    """Mark yourself safe: completes the check-in and stops both timers."""
    try:
        return await engine.mark_safe(session_id, current_user.id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/checkins/{session_id}/locations", response_model=list[LocationLogResponse])
def get_location_trail(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Every position broadcast during the check-in, oldest first."""
    _owned_or_404(db, session_id, current_user.id)
    return checkin_store.list_locations(db, session_id)


@router.post("/checkins/{session_id}/recording/chunks", response_model=RecordingChunkAck)
async def upload_recording_chunk(
    session_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    engine: CheckinEngine = Depends(get_engine),
):
    """Append a raw media chunk to the session's evidence recording."""
    session = _owned_or_404(db, session_id, current_user.id)
    if not session.recording_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Recording is not enabled for this check-in")
    if session.status not in OPEN_STATUSES:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Check-in is {session.status}")

    chunk = await _read_chunk(request)
    if not chunk:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty chunk")

    content_type = request.headers.get("content-type", "audio/webm").split(";")[0].strip()
    media_type = "video" if content_type.startswith("video/") else "audio"
    try:
        if not engine.recorder.is_recording(session_id):
            engine.recorder.start(session_id, current_user.id, media_type=media_type, content_type=content_type)
        active = engine.recorder.append(session_id, chunk)
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return RecordingChunkAck(session_id=session_id, bytes_received=len(chunk), total_bytes=active.size_bytes)


@router.get("/checkins/{session_id}/recordings", response_model=list[RecordingResponse])
def get_session_recordings(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _owned_or_404(db, session_id, current_user.id)
    return list_recordings(db, session_id)

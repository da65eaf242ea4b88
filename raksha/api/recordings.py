"""Evidence recordings API."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from raksha.core.deps import get_current_user
from raksha.core.errors import RecordingError
from raksha.db.session import get_db
from raksha.models.recording import Recording
from raksha.models.user import User
from raksha.schemas.recording import RecordingVerification
from raksha.services.recording_service import delete_recording, verify_recording

router = APIRouter(prefix="/recordings", tags=["recordings"])


def _owned_recording_or_404(db: Session, recording_id: int, owner_id: int) -> Recording:
    recording = db.get(Recording, recording_id)
    if not recording or recording.owner_id != owner_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording not found")
    return recording


@router.get("/{recording_id}/verify", response_model=RecordingVerification)
def verify_recording_hash(
    recording_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Re-hash the stored file to prove it has not been altered."""
    recording = _owned_recording_or_404(db, recording_id, current_user.id)
    return RecordingVerification(
        recording_id=recording.id,
        sha256=recording.sha256,
        intact=verify_recording(recording),
    )


@router.get("/{recording_id}/file")
def download_recording(
    recording_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Download the recorded media with its original content type."""
    recording = _owned_recording_or_404(db, recording_id, current_user.id)
    path = Path(recording.storage_path)
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording file is missing")
    return FileResponse(
        path,
        media_type=recording.content_type,
        filename=path.name,
        headers={"X-Content-SHA256": recording.sha256},
    )


@router.delete("/{recording_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_recording(
    recording_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delete the recording file and its record."""
    recording = _owned_recording_or_404(db, recording_id, current_user.id)
    try:
        delete_recording(db, recording)
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

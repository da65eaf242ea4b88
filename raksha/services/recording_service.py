"""Evidence recording: chunked media capture with tamper-evident hashes.

The client streams media chunks while a session records. Chunks are written
straight to disk and hashed as they arrive; stopping closes the file and
stores the metadata row with the SHA-256 digest. The file handle is released
on every stop path, including when the metadata write fails.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raksha.core.clock import Clock, utcnow
from raksha.core.errors import RecordingError
from raksha.models.recording import Recording

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/webm": ".webm",
    "video/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mp4": ".m4a",
    "video/mp4": ".mp4",
}


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for block in iter(lambda: fh.read(64 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


class ActiveRecording:
    """An open capture for one session."""

    def __init__(self, session_id: int, owner_id: int, path: Path, media_type: str, content_type: str, clock: Clock) -> None:
        self.session_id = session_id
        self.owner_id = owner_id
        self.path = path
        self.media_type = media_type
        self.content_type = content_type
        self.started_at = clock()
        self.size_bytes = 0
        self._hasher = hashlib.sha256()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: BinaryIO | None = path.open("wb")

    def write(self, chunk: bytes) -> None:
        if self._fh is None:
            raise RecordingError(f"Recording for session {self.session_id} is closed")
        self._fh.write(chunk)
        self._hasher.update(chunk)
        self.size_bytes += len(chunk)

    def close(self) -> str:
        """Flush and close the file. Returns the content hash."""
        if self._fh is not None:
            try:
                self._fh.flush()
            finally:
                self._fh.close()
                self._fh = None
        return self._hasher.hexdigest()


class RecordingService:
    """Owns the open recordings, one per session."""

    def __init__(self, session_factory: Callable[[], Session], root_dir: str | Path, clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._root = Path(root_dir)
        self._clock = clock
        self._active: dict[int, ActiveRecording] = {}

    def is_recording(self, session_id: int) -> bool:
        return session_id in self._active

    def start(self, session_id: int, owner_id: int, media_type: str = "audio", content_type: str = "audio/webm") -> ActiveRecording:
        """Open a capture for the session. Starting twice returns the open one."""
        active = self._active.get(session_id)
        if active is not None:
            return active
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
        path = self._root / str(owner_id) / f"session-{session_id}-{stamp}{_EXTENSIONS.get(content_type, '.bin')}"
        try:
            active = ActiveRecording(session_id, owner_id, path, media_type, content_type, self._clock)
        except OSError as exc:
            raise RecordingError(f"Cannot open recording file: {exc}") from exc
        self._active[session_id] = active
        logger.info("Recording started: session=%s path=%s", session_id, path)
        return active

    def append(self, session_id: int, chunk: bytes) -> ActiveRecording:
        active = self._active.get(session_id)
        if active is None:
            raise RecordingError(f"Session {session_id} is not recording")
        try:
            active.write(chunk)
        except OSError as exc:
            raise RecordingError(f"Cannot write recording chunk: {exc}") from exc
        return active

    def stop(self, session_id: int) -> Recording | None:
        """Close the capture and persist its metadata. None if nothing was recorded."""
        active = self._active.pop(session_id, None)
        if active is None:
            return None
        try:
            sha256 = active.close()
        except OSError as exc:
            raise RecordingError(f"Cannot close recording file: {exc}") from exc

        if active.size_bytes == 0:
            active.path.unlink(missing_ok=True)
            logger.info("Recording discarded (empty): session=%s", session_id)
            return None

        recording = Recording(
            session_id=active.session_id,
            owner_id=active.owner_id,
            media_type=active.media_type,
            content_type=active.content_type,
            storage_path=str(active.path),
            size_bytes=active.size_bytes,
            sha256=sha256,
            started_at=active.started_at,
            stopped_at=self._clock(),
        )
        with self._session_factory() as db:
            try:
                db.add(recording)
                db.commit()
                db.refresh(recording)
            except SQLAlchemyError as exc:
                db.rollback()
                raise RecordingError(f"Recording saved to {active.path} but metadata write failed") from exc
        logger.info("Recording saved: session=%s bytes=%s sha256=%s", session_id, recording.size_bytes, sha256)
        return recording

    def stop_all(self) -> None:
        for session_id in list(self._active):
            try:
                self.stop(session_id)
            except RecordingError:
                logger.exception("Failed to finalize recording for session %s", session_id)


def list_recordings(db: Session, session_id: int) -> list[Recording]:
    result = db.execute(
        select(Recording)
        .where(Recording.session_id == session_id)
        .order_by(Recording.started_at, Recording.id)
    )
    return list(result.scalars().all())


def verify_recording(recording: Recording) -> bool:
    """Re-hash the stored file and compare with the recorded digest."""
    path = Path(recording.storage_path)
    if not path.is_file():
        return False
    return file_sha256(path) == recording.sha256


def delete_recording(db: Session, recording: Recording) -> None:
    """Remove the stored file and its metadata row."""
    path = Path(recording.storage_path)
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise RecordingError(f"Cannot delete recording file: {exc}") from exc
    try:
        db.delete(recording)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise RecordingError(f"Recording file {path} removed but metadata delete failed") from exc
    logger.info("Recording deleted: id=%s path=%s", recording.id, path)

"""Evidence recording schemas."""

from datetime import datetime

from pydantic import BaseModel


class RecordingChunkAck(BaseModel):
    session_id: int
    bytes_received: int
    total_bytes: int


class RecordingResponse(BaseModel):
    id: int
    session_id: int
    media_type: str
    content_type: str
    size_bytes: int
    sha256: str
    started_at: datetime
    stopped_at: datetime

    model_config = {"from_attributes": True}


class RecordingVerification(BaseModel):
    recording_id: int
    sha256: str
    intact: bool

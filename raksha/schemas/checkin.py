"""Safety check-in schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from raksha.core.checkin_policies import (
    MAX_DEACTIVATION_LIMIT_SECONDS,
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
)


class CheckinStart(BaseModel):
    check_in_interval_seconds: int = Field(default=600, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)
    deactivation_limit_seconds: int | None = Field(
        default=None,
        gt=0,
        le=MAX_DEACTIVATION_LIMIT_SECONDS,
        description="Defaults to 6x the interval",
    )
    recording_enabled: bool = False

    @model_validator(mode="after")
    def default_deactivation_limit(self) -> "CheckinStart":
        if self.deactivation_limit_seconds is None:
            self.deactivation_limit_seconds = min(self.check_in_interval_seconds * 6, MAX_DEACTIVATION_LIMIT_SECONDS)
        return self


class CheckinResponse(BaseModel):
    id: int
    owner_id: int
    status: str
    check_in_interval_seconds: int
    deactivation_limit_seconds: int
    recording_enabled: bool
    missed_checkins: int
    created_at: datetime
    last_update_at: datetime
    marked_safe_at: datetime | None
    escalated_at: datetime | None
    critical_at: datetime | None
    archived_at: datetime | None

    model_config = {"from_attributes": True}


class LocationLogResponse(BaseModel):
    id: int
    session_id: int
    latitude: float
    longitude: float
    accuracy_m: float | None
    captured_at: datetime

    model_config = {"from_attributes": True}

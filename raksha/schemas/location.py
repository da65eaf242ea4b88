"""Device location report schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class LocationReport(BaseModel):
    """Position fix pushed by the owner's device."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    captured_at: datetime | None = Field(default=None, description="Device timestamp; server time if omitted")

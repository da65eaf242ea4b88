"""SOS alert schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class SosTrigger(BaseModel):
    """Optional position from the device; the server asks for one if omitted."""

    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def both_coordinates_or_none(self) -> "SosTrigger":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be sent together")
        return self


class SosAlertResponse(BaseModel):
    id: int
    owner_id: int
    session_id: int | None
    latitude: float
    longitude: float
    accuracy_m: float | None
    status: str
    delivered: int
    total: int
    created_at: datetime

    model_config = {"from_attributes": True}

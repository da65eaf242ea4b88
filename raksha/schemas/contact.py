"""Emergency contact schemas."""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from raksha.core.checkin_policies import E164_PATTERN

_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(raw: str) -> str:
    """Strip separators and check the result is an E.164 number."""
    phone = _SEPARATORS.sub("", raw)
    if not re.match(E164_PATTERN, phone):
        raise ValueError("Phone must be in international format, e.g. +14155550123")
    return phone


class ContactCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    phone: str
    relationship: str | None = Field(default=None, max_length=60)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return normalize_phone(v)


class ContactResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    phone: str
    relationship: str | None
    created_at: datetime

    model_config = {"from_attributes": True}

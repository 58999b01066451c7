"""Event schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10_000)
    location: str | None = Field(default=None, max_length=255)
    occurs_at: datetime


class EventUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10_000)
    location: str | None = Field(default=None, max_length=255)
    occurs_at: datetime | None = None

    @field_validator("title", "occurs_at")
    @classmethod
    def required_fields_not_null(cls, v: object) -> object:
        # omitted means unchanged; an explicit null would clear a NOT NULL column
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class EventOut(BaseModel):
    id: int
    user_id: int
    title: str
    description: str | None
    location: str | None
    occurs_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

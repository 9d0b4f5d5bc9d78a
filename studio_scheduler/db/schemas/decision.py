from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field


class DecisionOut(BaseModel):
    accepted: bool
    session_id: int | None = None
    reason: str | None = None
    message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ConflictOut(BaseModel):
    session_id: int
    trainer_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    location: str | None = None


class Availability(BaseModel):
    available: bool
    conflicts: list[ConflictOut]
    message: str


class AvailabilityWindow(BaseModel):
    start_time: datetime
    end_time: datetime


class BulkAvailabilityRequest(BaseModel):
    trainer_id: int
    windows: list[AvailabilityWindow]


class WindowAvailability(AvailabilityWindow):
    availability: Availability

from datetime import datetime
from pydantic import BaseModel, Field


class TrainingSessionBase(BaseModel):
    trainer_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    location: str
    max_participants: int
    notes: str | None = None


class TrainingSessionCreate(TrainingSessionBase):
    member_ids: list[int] = Field(default_factory=list)


class TrainingSessionUpdate(BaseModel):
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    location: str | None = None
    max_participants: int | None = None
    notes: str | None = None


class SessionStatusChange(BaseModel):
    status: str


class SessionMemberAdd(BaseModel):
    member_id: int


class TrainingSession(TrainingSessionBase):
    id: int
    current_participants: int
    status: str
    created_at: datetime | None = None
    member_ids: list[int] = Field(default_factory=list)

    class Config:
        from_attributes = True

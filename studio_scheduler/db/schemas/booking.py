from datetime import datetime
from pydantic import BaseModel


class SessionBooking(BaseModel):
    id: int
    session_id: int
    member_id: int
    status: str
    created_at: datetime | None = None
    cancelled_at: datetime | None = None
    session_start: datetime | None = None
    session_end: datetime | None = None
    session_location: str | None = None

    class Config:
        from_attributes = True

from datetime import datetime
from pydantic import BaseModel


class StatusCounts(BaseModel):
    total: int = 0
    scheduled: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    active: int = 0


class TrainerUtilization(BaseModel):
    trainer_id: int
    session_count: int
    booked_hours: float
    available_hours: float
    utilization: float


class HourBucket(BaseModel):
    hour: int
    session_count: int


class PeakHour(BaseModel):
    hour: str | None = None
    session_count: int = 0


class Trend(BaseModel):
    direction: str = "stable"
    this_period: int = 0
    previous_period: int = 0
    change: int = 0


class SessionAnalytics(BaseModel):
    trainer_id: int | None = None
    period_start: datetime
    period_end: datetime
    counts: StatusCounts
    attendance_rate: float
    completion_rate: float
    total_hours: float
    members_served: int
    utilization: list[TrainerUtilization]
    popularity: list[HourBucket]
    peak_hour: PeakHour
    trend: Trend

from .session import (
    TrainingSession,
    TrainingSessionCreate,
    TrainingSessionUpdate,
    SessionStatusChange,
    SessionMemberAdd,
)
from .booking import SessionBooking
from .decision import (
    DecisionOut,
    ConflictOut,
    Availability,
    AvailabilityWindow,
    BulkAvailabilityRequest,
    WindowAvailability,
)
from .analytics import (
    SessionAnalytics,
    StatusCounts,
    TrainerUtilization,
    HourBucket,
    PeakHour,
    Trend,
)

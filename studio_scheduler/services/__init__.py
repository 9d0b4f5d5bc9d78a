from . import (
    authorization,
    interval_index,
    locks,
    directory,
    conflict_detector,
    booking_validator,
    session_lifecycle,
    analytics,
    scheduling_service,
)
__all__ = [
    "authorization",
    "interval_index",
    "locks",
    "directory",
    "conflict_detector",
    "booking_validator",
    "session_lifecycle",
    "analytics",
    "scheduling_service",
]

from . import (
    sessions,
    availability,
    bookings,
    analytics,
    misc,
)

__all__ = [
    "sessions",
    "availability",
    "bookings",
    "analytics",
    "misc",
]

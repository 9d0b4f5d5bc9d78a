"""Common application-wide constants."""

from datetime import timedelta

# Message shared by "not found" and "not allowed" so callers cannot probe for records
NOT_FOUND_OR_FORBIDDEN = "Session not found or access denied"

# Retry hint returned with transient failures
TRANSIENT_RETRY_AFTER = timedelta(seconds=1)


__all__ = [
    "NOT_FOUND_OR_FORBIDDEN",
    "TRANSIENT_RETRY_AFTER",
]

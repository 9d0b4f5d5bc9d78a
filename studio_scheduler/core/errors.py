"""Exceptions raised by the scheduling engine.

Caller-fixable problems (past dates, conflicts, missing permissions) are never
raised; they come back as ``Rejected`` decisions. The exceptions below cover
the remaining cases: broken configuration, infrastructure that cannot answer
in time, and committed-state invariants that would have been violated.
"""

from __future__ import annotations

from typing import Any

from .constants import TRANSIENT_RETRY_AFTER


class SchedulingError(Exception):
    pass


class ConfigurationError(SchedulingError):
    """Raised at start-up when roles or capabilities are misconfigured."""


class SchedulingUnavailable(SchedulingError):
    """Transient failure; the caller should retry and must not assume availability."""

    def __init__(self, message: str, *, retry_after: float = TRANSIENT_RETRY_AFTER.total_seconds()) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvariantViolation(SchedulingError):
    """A commit would have broken a session invariant; the transaction was rolled back."""

    def __init__(self, message: str, *, session_id: int | None = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.context = context or {}


__all__ = [
    "SchedulingError",
    "ConfigurationError",
    "SchedulingUnavailable",
    "InvariantViolation",
]

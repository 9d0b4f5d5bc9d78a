from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Union

from sqlalchemy.orm import Session

from ..config import Settings
from ..core.constants import NOT_FOUND_OR_FORBIDDEN
from ..db import models
from . import directory
from .authorization import Operation, Principal, ResourceKind, authorize
from .conflict_detector import check_member_conflicts, check_trainer_conflict
from .interval_index import IntervalIndex, as_utc

logger = logging.getLogger(__name__)


class ReasonCode(str, Enum):
    PAST_DATE = "PAST_DATE"
    END_BEFORE_START = "END_BEFORE_START"
    TRAINER_CONFLICT = "TRAINER_CONFLICT"
    MEMBER_CONFLICT = "MEMBER_CONFLICT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    LOCATION_REQUIRED = "LOCATION_REQUIRED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"


@dataclass(frozen=True, slots=True)
class BookingRules:
    max_participants_limit: int = 20
    min_session_minutes: int = 15

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingRules":
        return cls(
            max_participants_limit=settings.max_participants_limit,
            min_session_minutes=settings.min_session_minutes,
        )


@dataclass(slots=True)
class SessionRequest:
    trainer_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    location: str
    max_participants: int
    member_ids: list[int]
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class SessionDraft:
    trainer_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    location: str
    max_participants: int
    member_ids: tuple[int, ...]
    notes: str | None = None
    session_id: int | None = None


@dataclass(slots=True)
class Accepted:
    session_id: int | None = None
    draft: SessionDraft | None = None
    accepted: bool = field(default=True, init=False)


@dataclass(slots=True)
class Rejected:
    reason: ReasonCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    accepted: bool = field(default=False, init=False)

    @classmethod
    def unauthorized(cls) -> "Rejected":
        return cls(ReasonCode.UNAUTHORIZED, NOT_FOUND_OR_FORBIDDEN)

    @classmethod
    def invalid_transition(cls, current: models.SessionStatus, target: str) -> "Rejected":
        return cls(
            ReasonCode.INVALID_STATE_TRANSITION,
            f"Cannot move a {current.value} session to {target}",
            {"current_status": current.value, "requested": target},
        )


Decision = Union[Accepted, Rejected]


def _dedupe(member_ids: Iterable[int]) -> tuple[int, ...]:
    return tuple(dict.fromkeys(member_ids))


def _check_interval(start: datetime, end: datetime, now: datetime, rules: BookingRules) -> Rejected | None:
    if end <= start:
        return Rejected(
            ReasonCode.END_BEFORE_START,
            "Session end time must be later than start time",
            {"scheduled_start": start.isoformat(), "scheduled_end": end.isoformat()},
        )
    if start < now:
        return Rejected(
            ReasonCode.PAST_DATE,
            "Training sessions cannot be scheduled in the past",
            {"scheduled_start": start.isoformat(), "now": now.isoformat()},
        )
    if rules.min_session_minutes and end - start < timedelta(minutes=rules.min_session_minutes):
        return Rejected(
            ReasonCode.END_BEFORE_START,
            f"Session must end at least {rules.min_session_minutes} minutes after it starts",
            {"min_session_minutes": rules.min_session_minutes},
        )
    return None


def _check_capacity(max_participants: int, member_count: int, rules: BookingRules) -> Rejected | None:
    if max_participants < 1 or max_participants > rules.max_participants_limit:
        return Rejected(
            ReasonCode.CAPACITY_EXCEEDED,
            f"Capacity must be between 1 and {rules.max_participants_limit}",
            {"max_participants": max_participants, "limit": rules.max_participants_limit},
        )
    if member_count < 1:
        return Rejected(
            ReasonCode.CAPACITY_EXCEEDED,
            "At least one member is required",
            {"member_count": member_count},
        )
    if member_count > max_participants:
        return Rejected(
            ReasonCode.CAPACITY_EXCEEDED,
            f"{member_count} members requested but capacity is {max_participants}",
            {"member_count": member_count, "max_participants": max_participants},
        )
    return None


def _member_conflict(conflicts: dict) -> Rejected:
    return Rejected(
        ReasonCode.MEMBER_CONFLICT,
        f"{len(conflicts)} member(s) already booked at this time",
        {
            "members": [
                {"member_id": member_id, "session": conflict.as_dict()}
                for member_id, conflict in sorted(conflicts.items())
            ]
        },
    )


def validate_session(
    db: Session,
    index: IntervalIndex,
    principal: Principal,
    request: SessionRequest,
    *,
    now: datetime,
    rules: BookingRules,
    exclude_session_id: int | None = None,
) -> Decision:
    """Run the full rule sequence for a new or rescheduled session.

    Stops at the first failing rule, except that every member with a clash is
    reported together. ``exclude_session_id`` is the session being edited, so
    its own previous interval and roster never count as conflicts, and members
    already confirmed on it are not re-checked against the directory.
    """
    if not authorize(principal, Operation.write, ResourceKind.session, request.trainer_id):
        return Rejected.unauthorized()

    start = as_utc(request.scheduled_start)
    end = as_utc(request.scheduled_end)
    rejection = _check_interval(start, end, as_utc(now), rules)
    if rejection:
        return rejection

    member_ids = _dedupe(request.member_ids)
    rejection = _check_capacity(request.max_participants, len(member_ids), rules)
    if rejection:
        return rejection

    trainer = directory.get_trainer(db, request.trainer_id)
    if trainer is None or not trainer.is_bookable:
        return Rejected.unauthorized()
    booked = directory.booked_member_ids(db, exclude_session_id) if exclude_session_id is not None else set()
    unknown = directory.unbookable_members(db, [member_id for member_id in member_ids if member_id not in booked])
    if unknown:
        logger.info("Rejected booking with unbookable members", extra={"member_ids": unknown})
        return Rejected.unauthorized()

    trainer_conflict = check_trainer_conflict(
        index, db, request.trainer_id, start, end, exclude_session_id=exclude_session_id
    )
    if trainer_conflict.conflict:
        return Rejected(
            ReasonCode.TRAINER_CONFLICT,
            f"Trainer has {len(trainer_conflict.conflicting_sessions)} conflicting session(s) during this time",
            {"conflicts": [conflict.as_dict() for conflict in trainer_conflict.conflicting_sessions]},
        )

    member_conflicts = check_member_conflicts(db, member_ids, start, end, exclude_session_id=exclude_session_id)
    if member_conflicts:
        return _member_conflict(member_conflicts)

    location = (request.location or "").strip()
    if not location:
        return Rejected(ReasonCode.LOCATION_REQUIRED, "Location is required")

    notes = request.notes.strip() if request.notes else None
    return Accepted(
        session_id=exclude_session_id,
        draft=SessionDraft(
            trainer_id=request.trainer_id,
            scheduled_start=start,
            scheduled_end=end,
            location=location,
            max_participants=request.max_participants,
            member_ids=member_ids,
            notes=notes or None,
            session_id=exclude_session_id,
        ),
    )


def validate_member_addition(
    db: Session,
    principal: Principal,
    session: models.TrainingSession,
    member_id: int,
    *,
    now: datetime,
) -> Decision:
    if not authorize(principal, Operation.write, ResourceKind.booking, session.trainer_id):
        return Rejected.unauthorized()
    if session.status != models.SessionStatus.scheduled:
        return Rejected.invalid_transition(session.status, "accept new members")
    start = as_utc(session.scheduled_start)
    if start < as_utc(now):
        return Rejected(
            ReasonCode.PAST_DATE,
            "Members cannot be added to a session that has already started",
            {"scheduled_start": start.isoformat()},
        )
    if directory.unbookable_members(db, [member_id]):
        return Rejected.unauthorized()

    confirmed = [
        booking.member_id
        for booking in session.bookings
        if booking.status == models.BookingStatus.confirmed
    ]
    if member_id in confirmed:
        return Rejected(
            ReasonCode.MEMBER_CONFLICT,
            "Member is already booked in this session",
            {"members": [{"member_id": member_id, "session_id": session.id}]},
        )
    if len(confirmed) + 1 > session.max_participants:
        return Rejected(
            ReasonCode.CAPACITY_EXCEEDED,
            "Session is full",
            {"member_count": len(confirmed) + 1, "max_participants": session.max_participants},
        )
    conflicts = check_member_conflicts(
        db, [member_id], start, as_utc(session.scheduled_end), exclude_session_id=session.id
    )
    if conflicts:
        return _member_conflict(conflicts)
    return Accepted(session_id=session.id)


__all__ = [
    "ReasonCode",
    "BookingRules",
    "SessionRequest",
    "SessionDraft",
    "Accepted",
    "Rejected",
    "Decision",
    "validate_session",
    "validate_member_addition",
]

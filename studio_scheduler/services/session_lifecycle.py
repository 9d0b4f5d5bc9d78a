from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.errors import InvariantViolation
from ..db import models
from .authorization import Principal, Role
from .booking_validator import Accepted, Decision, Rejected, SessionDraft
from .interval_index import IntervalIndex, as_utc, overlap_clause

logger = logging.getLogger(__name__)

Status = models.SessionStatus

ALLOWED_TRANSITIONS: dict[models.SessionStatus, frozenset[models.SessionStatus]] = {
    Status.scheduled: frozenset({Status.in_progress, Status.cancelled}),
    Status.in_progress: frozenset({Status.completed, Status.cancelled}),
    Status.completed: frozenset(),
    Status.cancelled: frozenset(),
}

_ACTOR_TYPES = {
    Role.admin: models.ActorType.admin,
    Role.trainer: models.ActorType.trainer,
    Role.member: models.ActorType.member,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: models.SessionStatus, target: models.SessionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def confirmed_member_ids(session: models.TrainingSession) -> list[int]:
    return [
        booking.member_id
        for booking in session.bookings
        if booking.status == models.BookingStatus.confirmed
    ]


def _record(db: Session, actor: Principal | None, action: str, session: models.TrainingSession, **payload) -> None:
    actor_type = _ACTOR_TYPES.get(actor.role, models.ActorType.system) if actor else models.ActorType.system
    db.add(
        models.AuditLog(
            actor_type=actor_type,
            actor_id=actor.subject_id if actor else None,
            action=action,
            payload={"session_id": session.id, "trainer_id": session.trainer_id, **payload},
        )
    )


def _count_confirmed(db: Session, session_id: int) -> int:
    return db.scalar(
        select(func.count(models.SessionBooking.id)).where(
            models.SessionBooking.session_id == session_id,
            models.SessionBooking.status == models.BookingStatus.confirmed,
        )
    ) or 0


def assert_session_invariants(db: Session, session: models.TrainingSession) -> None:
    db.flush()
    confirmed = _count_confirmed(db, session.id)
    if session.current_participants != confirmed:
        raise InvariantViolation(
            "Participant count does not match confirmed bookings",
            session_id=session.id,
            context={"current_participants": session.current_participants, "confirmed": confirmed},
        )
    if confirmed > session.max_participants:
        raise InvariantViolation(
            "Confirmed bookings exceed capacity",
            session_id=session.id,
            context={"confirmed": confirmed, "max_participants": session.max_participants},
        )
    if as_utc(session.scheduled_end) <= as_utc(session.scheduled_start):
        raise InvariantViolation("Session ends before it starts", session_id=session.id)
    if session.status == Status.cancelled:
        return
    overlapping = db.scalars(
        select(models.TrainingSession.id).where(
            models.TrainingSession.trainer_id == session.trainer_id,
            models.TrainingSession.id != session.id,
            models.TrainingSession.status != Status.cancelled,
            overlap_clause(
                models.TrainingSession.scheduled_start,
                models.TrainingSession.scheduled_end,
                session.scheduled_start,
                session.scheduled_end,
            ),
        )
    ).all()
    if overlapping:
        raise InvariantViolation(
            "Trainer already has an active session in this interval",
            session_id=session.id,
            context={"overlapping_session_ids": list(overlapping)},
        )


def _commit(db: Session, session: models.TrainingSession) -> None:
    try:
        assert_session_invariants(db, session)
    except InvariantViolation as exc:
        db.rollback()
        logger.error(
            "Session invariant violated; transaction rolled back",
            extra={"session_id": exc.session_id, "violation": str(exc), **exc.context},
        )
        raise
    db.commit()


def _sync_participant_count(db: Session, session: models.TrainingSession) -> None:
    db.flush()
    session.current_participants = _count_confirmed(db, session.id)


def create_session(
    db: Session, index: IntervalIndex, draft: SessionDraft, actor: Principal | None
) -> models.TrainingSession:
    session = models.TrainingSession(
        trainer_id=draft.trainer_id,
        scheduled_start=draft.scheduled_start,
        scheduled_end=draft.scheduled_end,
        location=draft.location,
        max_participants=draft.max_participants,
        current_participants=0,
        notes=draft.notes,
        status=Status.scheduled,
    )
    db.add(session)
    db.flush()
    for member_id in draft.member_ids:
        db.add(
            models.SessionBooking(
                session_id=session.id,
                member_id=member_id,
                status=models.BookingStatus.confirmed,
            )
        )
    _sync_participant_count(db, session)
    _record(db, actor, "session_created", session, member_ids=list(draft.member_ids))
    _commit(db, session)
    index.insert(session.trainer_id, session.scheduled_start, session.scheduled_end, session.id)
    logger.info(
        "Session created",
        extra={"session_id": session.id, "trainer_id": session.trainer_id, "members": len(draft.member_ids)},
    )
    return session


def update_schedule(
    db: Session,
    index: IntervalIndex,
    session: models.TrainingSession,
    draft: SessionDraft,
    actor: Principal | None,
) -> models.TrainingSession:
    before = {
        "scheduled_start": as_utc(session.scheduled_start).isoformat(),
        "scheduled_end": as_utc(session.scheduled_end).isoformat(),
        "location": session.location,
        "max_participants": session.max_participants,
    }
    session.scheduled_start = draft.scheduled_start
    session.scheduled_end = draft.scheduled_end
    session.location = draft.location
    session.max_participants = draft.max_participants
    session.notes = draft.notes
    _sync_participant_count(db, session)
    _record(
        db,
        actor,
        "session_updated",
        session,
        before=before,
        after={
            "scheduled_start": draft.scheduled_start.isoformat(),
            "scheduled_end": draft.scheduled_end.isoformat(),
            "location": draft.location,
            "max_participants": draft.max_participants,
        },
    )
    _commit(db, session)
    index.insert(session.trainer_id, session.scheduled_start, session.scheduled_end, session.id)
    logger.info("Session rescheduled", extra={"session_id": session.id})
    return session


def cancel_session(
    db: Session, index: IntervalIndex, session: models.TrainingSession, actor: Principal | None
) -> Decision:
    if not can_transition(session.status, Status.cancelled):
        return Rejected.invalid_transition(session.status, Status.cancelled.value)
    previous = session.status
    session.status = Status.cancelled
    _record(db, actor, "session_cancelled", session, previous_status=previous.value)
    _commit(db, session)
    index.remove(session.trainer_id, session.id)
    logger.info("Session cancelled", extra={"session_id": session.id})
    return Accepted(session_id=session.id)


def transition_status(
    db: Session,
    index: IntervalIndex,
    session: models.TrainingSession,
    target: models.SessionStatus,
    actor: Principal | None,
) -> Decision:
    if target == Status.cancelled:
        return cancel_session(db, index, session, actor)
    if not can_transition(session.status, target):
        return Rejected.invalid_transition(session.status, target.value)
    previous = session.status
    session.status = target
    _record(db, actor, "session_status_changed", session, previous_status=previous.value, status=target.value)
    _commit(db, session)
    return Accepted(session_id=session.id)


def add_member(
    db: Session, session: models.TrainingSession, member_id: int, actor: Principal | None
) -> Decision:
    existing = next((booking for booking in session.bookings if booking.member_id == member_id), None)
    if existing is not None:
        existing.status = models.BookingStatus.confirmed
        existing.cancelled_at = None
    else:
        db.add(
            models.SessionBooking(
                session_id=session.id,
                member_id=member_id,
                status=models.BookingStatus.confirmed,
            )
        )
    _sync_participant_count(db, session)
    _record(db, actor, "session_member_added", session, member_id=member_id)
    _commit(db, session)
    db.refresh(session)
    return Accepted(session_id=session.id)


def remove_member(
    db: Session, session: models.TrainingSession, member_id: int, actor: Principal | None
) -> Decision:
    if session.status != Status.scheduled:
        return Rejected.invalid_transition(session.status, "release members")
    booking = next(
        (
            booking
            for booking in session.bookings
            if booking.member_id == member_id and booking.status == models.BookingStatus.confirmed
        ),
        None,
    )
    if booking is None:
        return Accepted(session_id=session.id)
    booking.status = models.BookingStatus.cancelled
    booking.cancelled_at = _utc_now()
    _sync_participant_count(db, session)
    _record(db, actor, "session_member_removed", session, member_id=member_id)
    _commit(db, session)
    db.refresh(session)
    return Accepted(session_id=session.id)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "confirmed_member_ids",
    "assert_session_invariants",
    "create_session",
    "update_schedule",
    "cancel_session",
    "transition_status",
    "add_member",
    "remove_member",
]

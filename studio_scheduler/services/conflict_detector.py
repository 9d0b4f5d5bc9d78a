from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import models
from .interval_index import IntervalIndex, as_utc, overlap_clause


@dataclass(frozen=True, slots=True)
class ConflictingSession:
    session_id: int
    trainer_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    location: str | None = None

    @classmethod
    def from_model(cls, session: models.TrainingSession) -> "ConflictingSession":
        return cls(
            session_id=session.id,
            trainer_id=session.trainer_id,
            scheduled_start=as_utc(session.scheduled_start),
            scheduled_end=as_utc(session.scheduled_end),
            location=session.location,
        )

    def as_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "trainer_id": self.trainer_id,
            "scheduled_start": self.scheduled_start.isoformat(),
            "scheduled_end": self.scheduled_end.isoformat(),
            "location": self.location,
        }


@dataclass(slots=True)
class TrainerConflictResult:
    conflict: bool
    conflicting_sessions: list[ConflictingSession] = field(default_factory=list)


def check_trainer_conflict(
    index: IntervalIndex,
    db: Session,
    trainer_id: int,
    start: datetime,
    end: datetime,
    exclude_session_id: int | None = None,
) -> TrainerConflictResult:
    entries = index.overlapping(trainer_id, start, end, exclude_session_id=exclude_session_id)
    if not entries:
        return TrainerConflictResult(conflict=False)
    rows = {
        session.id: session
        for session in db.execute(
            select(models.TrainingSession).where(
                models.TrainingSession.id.in_([entry.session_id for entry in entries])
            )
        ).scalars()
    }
    conflicts = []
    for entry in entries:
        row = rows.get(entry.session_id)
        if row is not None:
            conflicts.append(ConflictingSession.from_model(row))
        else:
            conflicts.append(
                ConflictingSession(
                    session_id=entry.session_id,
                    trainer_id=trainer_id,
                    scheduled_start=entry.start,
                    scheduled_end=entry.end,
                )
            )
    return TrainerConflictResult(conflict=True, conflicting_sessions=conflicts)


def check_member_conflicts(
    db: Session,
    member_ids: Iterable[int],
    start: datetime,
    end: datetime,
    exclude_session_id: int | None = None,
) -> dict[int, ConflictingSession]:
    ids = list(member_ids)
    if not ids:
        return {}
    stmt = (
        select(models.SessionBooking.member_id, models.TrainingSession)
        .join(models.TrainingSession, models.SessionBooking.session_id == models.TrainingSession.id)
        .where(
            models.SessionBooking.member_id.in_(ids),
            models.SessionBooking.status == models.BookingStatus.confirmed,
            models.TrainingSession.status != models.SessionStatus.cancelled,
            overlap_clause(
                models.TrainingSession.scheduled_start,
                models.TrainingSession.scheduled_end,
                start,
                end,
            ),
        )
        .order_by(models.TrainingSession.scheduled_start, models.TrainingSession.id)
    )
    if exclude_session_id is not None:
        stmt = stmt.where(models.TrainingSession.id != exclude_session_id)
    conflicts: dict[int, ConflictingSession] = {}
    for member_id, session in db.execute(stmt).all():
        conflicts.setdefault(member_id, ConflictingSession.from_model(session))
    return conflicts


__all__ = [
    "ConflictingSession",
    "TrainerConflictResult",
    "check_trainer_conflict",
    "check_member_conflicts",
]

"""Entry points used by the API and the maintenance worker.

``SchedulingEngine`` owns the shared state of a process: the interval index,
the per-trainer and per-member locks, the clock and the session factory. Each
write holds its trainer lock from the first conflict check until the commit,
so two overlapping requests for one trainer are decided one after the other.
"""

from __future__ import annotations

import logging
import time as time_module
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..config import Settings, get_settings
from ..core.errors import SchedulingUnavailable
from ..db import models, schemas
from . import analytics, session_lifecycle
from .authorization import Operation, Principal, ResourceKind, authorize
from .booking_validator import (
    Accepted,
    BookingRules,
    Decision,
    Rejected,
    SessionRequest,
    validate_member_addition,
    validate_session,
)
from .conflict_detector import ConflictingSession, check_trainer_conflict
from .interval_index import IntervalEntry, IntervalIndex, as_utc
from .locks import KeyedLocks

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class AvailabilityResult:
    available: bool
    conflicts: list[ConflictingSession] = field(default_factory=list)
    message: str = ""


@dataclass(slots=True)
class SessionPatch:
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    location: str | None = None
    max_participants: int | None = None
    notes: str | None = None


class SchedulingEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
        index: IntervalIndex | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.clock = clock
        self.index = index or IntervalIndex()
        self.locks = KeyedLocks(timeout=self.settings.lock_timeout_seconds)
        self.rules = BookingRules.from_settings(self.settings)

    @contextmanager
    def _db(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except OperationalError as exc:
            db.rollback()
            logger.warning("Storage unavailable", exc_info=True)
            raise SchedulingUnavailable("Storage is temporarily unavailable") from exc
        finally:
            db.close()

    def _load_session(self, db: Session, session_id: int) -> models.TrainingSession | None:
        return db.execute(
            select(models.TrainingSession)
            .options(selectinload(models.TrainingSession.bookings))
            .where(models.TrainingSession.id == session_id)
        ).scalar_one_or_none()

    def _trainer_of(self, session_id: int) -> int | None:
        with self._db() as db:
            return db.scalar(
                select(models.TrainingSession.trainer_id).where(models.TrainingSession.id == session_id)
            )

    def validate_and_create(self, principal: Principal, request: SessionRequest) -> Decision:
        if not authorize(principal, Operation.write, ResourceKind.session, request.trainer_id):
            return Rejected.unauthorized()
        with self.locks.booking_scope(request.trainer_id, request.member_ids), self._db() as db:
            decision = validate_session(
                db, self.index, principal, request, now=self.clock(), rules=self.rules
            )
            if not decision.accepted:
                logger.info(
                    "Session request rejected",
                    extra={"trainer_id": request.trainer_id, "reason": decision.reason.value},
                )
                return decision
            session = session_lifecycle.create_session(db, self.index, decision.draft, principal)
            return Accepted(session_id=session.id, draft=decision.draft)

    def validate_and_update(self, principal: Principal, session_id: int, patch: SessionPatch) -> Decision:
        trainer_id = self._trainer_of(session_id)
        if trainer_id is None:
            return Rejected.unauthorized()
        with self.locks.trainer(trainer_id), self._db() as db:
            session = self._load_session(db, session_id)
            if session is None or session.trainer_id != trainer_id:
                return Rejected.unauthorized()
            if not authorize(principal, Operation.write, ResourceKind.session, session.trainer_id):
                return Rejected.unauthorized()
            if session.status != models.SessionStatus.scheduled:
                return Rejected.invalid_transition(session.status, "reschedule")
            roster = session_lifecycle.confirmed_member_ids(session)
            with self.locks.members(roster):
                request = SessionRequest(
                    trainer_id=session.trainer_id,
                    scheduled_start=patch.scheduled_start or session.scheduled_start,
                    scheduled_end=patch.scheduled_end or session.scheduled_end,
                    location=patch.location if patch.location is not None else session.location,
                    max_participants=(
                        patch.max_participants
                        if patch.max_participants is not None
                        else session.max_participants
                    ),
                    member_ids=roster,
                    notes=patch.notes if patch.notes is not None else session.notes,
                )
                decision = validate_session(
                    db,
                    self.index,
                    principal,
                    request,
                    now=self.clock(),
                    rules=self.rules,
                    exclude_session_id=session.id,
                )
                if not decision.accepted:
                    return decision
                session_lifecycle.update_schedule(db, self.index, session, decision.draft, principal)
                return Accepted(session_id=session.id, draft=decision.draft)

    def cancel(self, principal: Principal, session_id: int) -> Decision:
        return self.transition_status(principal, session_id, models.SessionStatus.cancelled)

    def transition_status(
        self, principal: Principal, session_id: int, target: models.SessionStatus
    ) -> Decision:
        trainer_id = self._trainer_of(session_id)
        if trainer_id is None:
            return Rejected.unauthorized()
        with self.locks.trainer(trainer_id), self._db() as db:
            session = self._load_session(db, session_id)
            if session is None or not authorize(
                principal, Operation.write, ResourceKind.session, session.trainer_id
            ):
                return Rejected.unauthorized()
            return session_lifecycle.transition_status(db, self.index, session, target, principal)

    def add_member(self, principal: Principal, session_id: int, member_id: int) -> Decision:
        trainer_id = self._trainer_of(session_id)
        if trainer_id is None:
            return Rejected.unauthorized()
        with self.locks.booking_scope(trainer_id, [member_id]), self._db() as db:
            session = self._load_session(db, session_id)
            if session is None:
                return Rejected.unauthorized()
            decision = validate_member_addition(db, principal, session, member_id, now=self.clock())
            if not decision.accepted:
                return decision
            return session_lifecycle.add_member(db, session, member_id, principal)

    def remove_member(self, principal: Principal, session_id: int, member_id: int) -> Decision:
        trainer_id = self._trainer_of(session_id)
        if trainer_id is None:
            return Rejected.unauthorized()
        with self.locks.booking_scope(trainer_id, [member_id]), self._db() as db:
            session = self._load_session(db, session_id)
            if session is None or not authorize(
                principal, Operation.write, ResourceKind.booking, session.trainer_id
            ):
                return Rejected.unauthorized()
            return session_lifecycle.remove_member(db, session, member_id, principal)

    def check_availability(
        self,
        trainer_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: int | None = None,
    ) -> AvailabilityResult:
        start, end = as_utc(start), as_utc(end)
        if end <= start:
            return AvailabilityResult(available=False, message="Session end time must be later than start time")
        started = time_module.monotonic()
        with self._db() as db:
            result = check_trainer_conflict(
                self.index, db, trainer_id, start, end, exclude_session_id=exclude_session_id
            )
        elapsed_ms = (time_module.monotonic() - started) * 1000
        if elapsed_ms > self.settings.availability_timeout_ms:
            logger.warning(
                "Availability check exceeded its budget",
                extra={"trainer_id": trainer_id, "elapsed_ms": round(elapsed_ms, 1)},
            )
            raise SchedulingUnavailable("Availability check timed out; retry the request")
        if result.conflict:
            return AvailabilityResult(
                available=False,
                conflicts=result.conflicting_sessions,
                message=f"Trainer has {len(result.conflicting_sessions)} conflicting session(s) during this time",
            )
        return AvailabilityResult(available=True, message="Trainer is available")

    def bulk_availability(
        self, trainer_id: int, windows: Iterable[tuple[datetime, datetime]]
    ) -> list[AvailabilityResult]:
        return [self.check_availability(trainer_id, start, end) for start, end in windows]

    def trainer_day_schedule(self, trainer_id: int, day: date) -> list[IntervalEntry]:
        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        return self.index.overlapping(trainer_id, day_start, day_end)

    def get_analytics(
        self,
        principal: Principal,
        period_start: datetime,
        period_end: datetime,
        trainer_id: int | None = None,
    ) -> schemas.SessionAnalytics | Rejected:
        if not authorize(principal, Operation.read, ResourceKind.session, trainer_id):
            return Rejected.unauthorized()
        with self._db() as db:
            return analytics.get_analytics(
                db,
                period_start=period_start,
                period_end=period_end,
                trainer_id=trainer_id,
                hours_per_day=self.settings.studio_hours_per_day,
            )

    def _active_rows(self, db: Session, trainer_id: int | None = None):
        stmt = select(
            models.TrainingSession.trainer_id,
            models.TrainingSession.scheduled_start,
            models.TrainingSession.scheduled_end,
            models.TrainingSession.id,
        ).where(models.TrainingSession.status != models.SessionStatus.cancelled)
        if trainer_id is not None:
            stmt = stmt.where(models.TrainingSession.trainer_id == trainer_id)
        return db.execute(stmt).all()

    def rebuild_index(self) -> int:
        with self._db() as db:
            return self.index.rebuild(self._active_rows(db))

    def reconcile(self) -> dict[str, int]:
        """Resync each trainer's index entries with storage and report count drift."""
        with self._db() as db:
            trainer_ids = set(db.scalars(select(models.TrainingSession.trainer_id).distinct()).all())
        trainer_ids |= self.index.trainer_ids()
        resynced = 0
        for trainer_id in sorted(trainer_ids):
            try:
                with self.locks.trainer(trainer_id), self._db() as db:
                    stored = sorted(
                        (
                            IntervalEntry(start=as_utc(start), end=as_utc(end), session_id=session_id)
                            for _, start, end, session_id in self._active_rows(db, trainer_id)
                        ),
                        key=lambda entry: (entry.start, entry.session_id),
                    )
                    indexed = sorted(
                        self.index.intervals(trainer_id), key=lambda entry: (entry.start, entry.session_id)
                    )
                    if stored != indexed:
                        logger.warning(
                            "Interval index drifted from storage; resyncing",
                            extra={"trainer_id": trainer_id, "stored": len(stored), "indexed": len(indexed)},
                        )
                        self.index.replace_trainer(trainer_id, stored)
                        resynced += 1
            except SchedulingUnavailable:
                logger.warning("Skipped index resync for busy trainer", extra={"trainer_id": trainer_id})
        drifted = self._participant_drift()
        return {"trainers": len(trainer_ids), "resynced": resynced, "participant_drift": drifted}

    def _participant_drift(self) -> int:
        with self._db() as db:
            sessions = db.execute(
                select(models.TrainingSession).options(selectinload(models.TrainingSession.bookings))
            ).scalars()
            drifted = 0
            for session in sessions:
                confirmed = len(session_lifecycle.confirmed_member_ids(session))
                if confirmed != session.current_participants:
                    drifted += 1
                    logger.warning(
                        "Participant count drift",
                        extra={
                            "session_id": session.id,
                            "current_participants": session.current_participants,
                            "confirmed": confirmed,
                        },
                    )
            return drifted


__all__ = ["SchedulingEngine", "SessionPatch", "AvailabilityResult"]

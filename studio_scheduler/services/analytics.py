"""Read-only rollups over committed sessions.

Nothing here writes. Figures may lag the latest commits when computed against
a replica; they are for dashboards, not for booking decisions.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import models, schemas
from .interval_index import as_utc, overlap_clause

Status = models.SessionStatus


def _sessions_in_period(
    db: Session, period_start: datetime, period_end: datetime, trainer_id: int | None
) -> list[models.TrainingSession]:
    stmt = select(models.TrainingSession).where(
        overlap_clause(
            models.TrainingSession.scheduled_start,
            models.TrainingSession.scheduled_end,
            period_start,
            period_end,
        )
    )
    if trainer_id is not None:
        stmt = stmt.where(models.TrainingSession.trainer_id == trainer_id)
    return list(db.execute(stmt.order_by(models.TrainingSession.scheduled_start)).scalars().all())


def _started_in(
    sessions: list[models.TrainingSession], period_start: datetime, period_end: datetime
) -> list[models.TrainingSession]:
    return [session for session in sessions if period_start <= as_utc(session.scheduled_start) < period_end]


def _hours(session: models.TrainingSession, period_start: datetime, period_end: datetime) -> float:
    start = max(as_utc(session.scheduled_start), period_start)
    end = min(as_utc(session.scheduled_end), period_end)
    if end <= start:
        return 0.0
    return (end - start).total_seconds() / 3600


def _percent(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 1)


def count_statuses(sessions: list[models.TrainingSession]) -> schemas.StatusCounts:
    counts = schemas.StatusCounts()
    for session in sessions:
        counts.total += 1
        if session.status == Status.scheduled:
            counts.scheduled += 1
            counts.active += 1
        elif session.status == Status.in_progress:
            counts.in_progress += 1
            counts.active += 1
        elif session.status == Status.completed:
            counts.completed += 1
        elif session.status == Status.cancelled:
            counts.cancelled += 1
    return counts


def attendance_rate(sessions: list[models.TrainingSession]) -> float:
    rates = [
        session.current_participants / session.max_participants
        for session in sessions
        if session.status != Status.cancelled and session.max_participants > 0
    ]
    if not rates:
        return 0.0
    return round(sum(rates) / len(rates) * 100, 1)


def trainer_utilization(
    sessions: list[models.TrainingSession],
    period_start: datetime,
    period_end: datetime,
    hours_per_day: int,
) -> list[schemas.TrainerUtilization]:
    days = max(math.ceil((period_end - period_start) / timedelta(days=1)), 0)
    available = float(days * hours_per_day)
    booked: dict[int, float] = defaultdict(float)
    counted: Counter[int] = Counter()
    for session in sessions:
        if session.status == Status.cancelled:
            continue
        booked[session.trainer_id] += _hours(session, period_start, period_end)
        counted[session.trainer_id] += 1
    return [
        schemas.TrainerUtilization(
            trainer_id=trainer_id,
            session_count=counted[trainer_id],
            booked_hours=round(hours, 2),
            available_hours=available,
            utilization=_percent(hours, available),
        )
        for trainer_id, hours in sorted(booked.items())
    ]


def slot_popularity(sessions: list[models.TrainingSession]) -> tuple[list[schemas.HourBucket], schemas.PeakHour]:
    histogram = Counter(
        as_utc(session.scheduled_start).hour for session in sessions if session.status != Status.cancelled
    )
    buckets = [schemas.HourBucket(hour=hour, session_count=count) for hour, count in sorted(histogram.items())]
    if not buckets:
        return buckets, schemas.PeakHour()
    peak = max(buckets, key=lambda bucket: (bucket.session_count, -bucket.hour))
    return buckets, schemas.PeakHour(hour=f"{peak.hour:02d}:00", session_count=peak.session_count)


def _members_served(db: Session, session_ids: list[int]) -> int:
    if not session_ids:
        return 0
    rows = db.execute(
        select(models.SessionBooking.member_id)
        .where(
            models.SessionBooking.session_id.in_(session_ids),
            models.SessionBooking.status == models.BookingStatus.confirmed,
        )
        .distinct()
    ).all()
    return len(rows)


def _trend(current: int, previous: int) -> schemas.Trend:
    if current > previous:
        direction = "up"
    elif current < previous:
        direction = "down"
    else:
        direction = "stable"
    return schemas.Trend(direction=direction, this_period=current, previous_period=previous, change=current - previous)


def get_analytics(
    db: Session,
    *,
    period_start: datetime,
    period_end: datetime,
    trainer_id: int | None = None,
    hours_per_day: int = 16,
) -> schemas.SessionAnalytics:
    period_start, period_end = as_utc(period_start), as_utc(period_end)
    # Booked hours count every session overlapping the period, clipped to it.
    # Counts, rates, popularity and trend only count sessions starting inside it.
    overlapping = _sessions_in_period(db, period_start, period_end, trainer_id)
    live = [session for session in overlapping if session.status != Status.cancelled]
    sessions = _started_in(overlapping, period_start, period_end)
    started_live = [session for session in sessions if session.status != Status.cancelled]

    counts = count_statuses(sessions)
    popularity, peak = slot_popularity(sessions)

    previous_start = period_start - (period_end - period_start)
    previous = [
        session
        for session in _started_in(
            _sessions_in_period(db, previous_start, period_start, trainer_id), previous_start, period_start
        )
        if session.status != Status.cancelled
    ]

    return schemas.SessionAnalytics(
        trainer_id=trainer_id,
        period_start=period_start,
        period_end=period_end,
        counts=counts,
        attendance_rate=attendance_rate(sessions),
        completion_rate=_percent(counts.completed, counts.completed + counts.cancelled),
        total_hours=round(sum(_hours(session, period_start, period_end) for session in live), 2),
        members_served=_members_served(db, [session.id for session in live]),
        utilization=trainer_utilization(overlapping, period_start, period_end, hours_per_day),
        popularity=popularity,
        peak_hour=peak,
        trend=_trend(len(started_live), len(previous)),
    )


__all__ = [
    "get_analytics",
    "count_statuses",
    "attendance_rate",
    "trainer_utilization",
    "slot_popularity",
]

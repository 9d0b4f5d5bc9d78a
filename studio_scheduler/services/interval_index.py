from __future__ import annotations

import bisect
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import and_

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open ``[start, end)`` overlap. Sessions that only touch at an endpoint do not overlap."""
    return start_a < end_b and start_b < end_a


def overlap_clause(start_column, end_column, start: datetime, end: datetime):
    """SQL form of :func:`intervals_overlap` for rows holding ``[start_column, end_column)``."""
    return and_(start_column < as_utc(end), end_column > as_utc(start))


@dataclass(frozen=True, slots=True)
class IntervalEntry:
    start: datetime
    end: datetime
    session_id: int


def _entry_start(entry: IntervalEntry) -> datetime:
    return entry.start


class _TrainerTimeline:
    """Intervals of one trainer ordered by start.

    ``_longest`` bounds how far before the query start a still-running interval
    may begin, so an overlap lookup only scans that window.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._entries: list[IntervalEntry] = []
        self._by_session: dict[int, IntervalEntry] = {}
        self._longest = timedelta(0)

    def snapshot(self) -> list[IntervalEntry]:
        with self.lock:
            return list(self._entries)

    def insert(self, entry: IntervalEntry) -> None:
        with self.lock:
            self._discard(entry.session_id)
            bisect.insort(self._entries, entry, key=_entry_start)
            self._by_session[entry.session_id] = entry
            self._longest = max(self._longest, entry.end - entry.start)

    def remove(self, session_id: int) -> bool:
        with self.lock:
            return self._discard(session_id)

    def overlapping(
        self, start: datetime, end: datetime, exclude_session_id: int | None = None
    ) -> list[IntervalEntry]:
        with self.lock:
            lo = bisect.bisect_right(self._entries, start - self._longest, key=_entry_start)
            hi = bisect.bisect_left(self._entries, end, key=_entry_start)
            return [
                entry
                for entry in self._entries[lo:hi]
                if entry.session_id != exclude_session_id
                and intervals_overlap(entry.start, entry.end, start, end)
            ]

    def __len__(self) -> int:
        return len(self._entries)

    def _discard(self, session_id: int) -> bool:
        entry = self._by_session.pop(session_id, None)
        if entry is None:
            return False
        pos = bisect.bisect_left(self._entries, entry.start, key=_entry_start)
        while self._entries[pos].session_id != session_id:
            pos += 1
        del self._entries[pos]
        return True


class IntervalIndex:
    """Per-trainer index of the intervals held by non-cancelled sessions."""

    def __init__(self) -> None:
        self._timelines: dict[int, _TrainerTimeline] = {}

    def _timeline(self, trainer_id: int) -> _TrainerTimeline:
        timeline = self._timelines.get(trainer_id)
        if timeline is None:
            timeline = self._timelines.setdefault(trainer_id, _TrainerTimeline())
        return timeline

    def intervals(self, trainer_id: int) -> list[IntervalEntry]:
        timeline = self._timelines.get(trainer_id)
        return timeline.snapshot() if timeline else []

    def insert(self, trainer_id: int, start: datetime, end: datetime, session_id: int) -> None:
        start, end = as_utc(start), as_utc(end)
        if end <= start:
            raise ValueError("Interval end must be after its start")
        self._timeline(trainer_id).insert(IntervalEntry(start=start, end=end, session_id=session_id))

    def remove(self, trainer_id: int, session_id: int) -> bool:
        timeline = self._timelines.get(trainer_id)
        if timeline is None:
            return False
        return timeline.remove(session_id)

    def overlapping(
        self,
        trainer_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: int | None = None,
    ) -> list[IntervalEntry]:
        timeline = self._timelines.get(trainer_id)
        if timeline is None:
            return []
        return timeline.overlapping(as_utc(start), as_utc(end), exclude_session_id)

    def rebuild(self, rows: Iterable[tuple[int, datetime, datetime, int]]) -> int:
        """Replace the whole index from ``(trainer_id, start, end, session_id)`` rows."""
        timelines: dict[int, _TrainerTimeline] = {}
        count = 0
        for trainer_id, start, end, session_id in rows:
            timeline = timelines.setdefault(trainer_id, _TrainerTimeline())
            timeline.insert(IntervalEntry(start=as_utc(start), end=as_utc(end), session_id=session_id))
            count += 1
        self._timelines = timelines
        logger.info("Interval index rebuilt", extra={"intervals": count, "trainers": len(timelines)})
        return count

    def replace_trainer(self, trainer_id: int, entries: Iterable[IntervalEntry]) -> None:
        timeline = _TrainerTimeline()
        for entry in entries:
            timeline.insert(entry)
        self._timelines[trainer_id] = timeline

    def trainer_ids(self) -> set[int]:
        return set(self._timelines)

    def clear(self) -> None:
        self._timelines = {}

    def __len__(self) -> int:
        return sum(len(timeline) for timeline in list(self._timelines.values()))


__all__ = ["IntervalIndex", "IntervalEntry", "intervals_overlap", "overlap_clause", "as_utc"]

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import models


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    id: int
    full_name: str
    is_bookable: bool


def get_trainer(db: Session, trainer_id: int) -> DirectoryEntry | None:
    trainer = db.get(models.Trainer, trainer_id)
    if trainer is None:
        return None
    return DirectoryEntry(id=trainer.id, full_name=trainer.full_name, is_bookable=bool(trainer.is_active))


def get_members(db: Session, member_ids: Iterable[int]) -> dict[int, DirectoryEntry]:
    ids = list(member_ids)
    if not ids:
        return {}
    rows = db.execute(select(models.Member).where(models.Member.id.in_(ids))).scalars()
    return {
        member.id: DirectoryEntry(
            id=member.id,
            full_name=member.full_name,
            is_bookable=member.status == models.MemberStatus.active,
        )
        for member in rows
    }


def unbookable_members(db: Session, member_ids: Iterable[int]) -> list[int]:
    ids = list(member_ids)
    found = get_members(db, ids)
    return [member_id for member_id in ids if member_id not in found or not found[member_id].is_bookable]


def booked_member_ids(db: Session, session_id: int) -> set[int]:
    return set(
        db.scalars(
            select(models.SessionBooking.member_id).where(
                models.SessionBooking.session_id == session_id,
                models.SessionBooking.status == models.BookingStatus.confirmed,
            )
        ).all()
    )

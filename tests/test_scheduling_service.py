import itertools

import pytest
from sqlalchemy.exc import OperationalError

from studio_scheduler.config import Settings
from studio_scheduler.core.errors import InvariantViolation, SchedulingUnavailable
from studio_scheduler.db import models
from studio_scheduler.services import scheduling_service, session_lifecycle
from studio_scheduler.services.authorization import Principal
from studio_scheduler.services.booking_validator import ReasonCode, SessionRequest
from studio_scheduler.services.scheduling_service import SchedulingEngine, SessionPatch

from conftest import NOW, at

ADMIN = Principal.build("admin")


def _create(engine, trainer_id, start, end, member_ids, max_participants=4, location="Studio A"):
    return engine.validate_and_create(
        ADMIN,
        SessionRequest(
            trainer_id=trainer_id,
            scheduled_start=start,
            scheduled_end=end,
            location=location,
            max_participants=max_participants,
            member_ids=list(member_ids),
        ),
    )


def test_create_commits_session_bookings_and_index(scheduling_engine, directory, db_session):
    trainer = directory["trainers"][0]
    decision = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:3])
    assert decision.accepted

    session = db_session.get(models.TrainingSession, decision.session_id)
    assert session.current_participants == 3
    assert session.status == models.SessionStatus.scheduled
    assert sorted(session_lifecycle.confirmed_member_ids(session)) == sorted(directory["members"][:3])
    assert [entry.session_id for entry in scheduling_engine.index.intervals(trainer)] == [decision.session_id]
    audit = db_session.query(models.AuditLog).filter_by(action="session_created").one()
    assert audit.actor_type == models.ActorType.admin
    assert audit.payload["session_id"] == decision.session_id


def test_trainer_conflict_lists_blocking_session(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    first = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    second = _create(scheduling_engine, trainer, at(9, 30), at(10, 30), directory["members"][1:2])

    assert not second.accepted
    assert second.reason == ReasonCode.TRAINER_CONFLICT
    conflicts = second.details["conflicts"]
    assert [conflict["session_id"] for conflict in conflicts] == [first.session_id]
    assert conflicts[0]["scheduled_start"] == at(9).isoformat()


def test_touching_sessions_are_both_accepted(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    member = directory["members"][0]
    assert _create(scheduling_engine, trainer, at(9), at(10), [member]).accepted
    assert _create(scheduling_engine, trainer, at(10), at(11), [member]).accepted


def test_member_conflict_names_member_across_trainers(scheduling_engine, directory):
    first_trainer, second_trainer = directory["trainers"]
    member = directory["members"][0]
    blocking = _create(scheduling_engine, second_trainer, at(9), at(10), [member])
    decision = _create(
        scheduling_engine, first_trainer, at(9, 30), at(10, 30), [directory["members"][1], member]
    )
    assert decision.reason == ReasonCode.MEMBER_CONFLICT
    assert decision.details["members"] == [
        {
            "member_id": member,
            "session": {
                "session_id": blocking.session_id,
                "trainer_id": second_trainer,
                "scheduled_start": at(9).isoformat(),
                "scheduled_end": at(10).isoformat(),
                "location": "Studio A",
            },
        }
    ]


def test_cancelled_sessions_free_the_slot(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    first = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    assert scheduling_engine.cancel(ADMIN, first.session_id).accepted
    assert scheduling_engine.index.intervals(trainer) == []
    assert _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1]).accepted


def test_status_transitions(scheduling_engine, directory):
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), directory["members"][:1]
    ).session_id
    assert scheduling_engine.transition_status(ADMIN, session_id, models.SessionStatus.in_progress).accepted
    assert scheduling_engine.transition_status(ADMIN, session_id, models.SessionStatus.completed).accepted

    decision = scheduling_engine.cancel(ADMIN, session_id)
    assert decision.reason == ReasonCode.INVALID_STATE_TRANSITION
    assert decision.details == {"current_status": "completed", "requested": "cancelled"}

    backwards = scheduling_engine.transition_status(ADMIN, session_id, models.SessionStatus.scheduled)
    assert backwards.reason == ReasonCode.INVALID_STATE_TRANSITION


def test_missing_session_and_forbidden_principal_are_indistinguishable(scheduling_engine, directory):
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), directory["members"][:1]
    ).session_id
    member = Principal.build("member", directory["members"][0])
    forbidden = scheduling_engine.cancel(member, session_id)
    missing = scheduling_engine.cancel(ADMIN, 9999)
    assert forbidden.reason == missing.reason == ReasonCode.UNAUTHORIZED
    assert forbidden.message == missing.message


def test_reschedule_ignores_own_interval_and_detects_others(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    first = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    second = _create(scheduling_engine, trainer, at(11), at(12), directory["members"][1:2])

    moved = scheduling_engine.validate_and_update(
        ADMIN, first.session_id, SessionPatch(scheduled_start=at(9, 30), scheduled_end=at(10, 30))
    )
    assert moved.accepted
    assert scheduling_engine.index.overlapping(trainer, at(9), at(9, 30)) == []

    clash = scheduling_engine.validate_and_update(
        ADMIN, first.session_id, SessionPatch(scheduled_start=at(11, 30), scheduled_end=at(12, 30))
    )
    assert clash.reason == ReasonCode.TRAINER_CONFLICT
    assert clash.details["conflicts"][0]["session_id"] == second.session_id


def test_reschedule_cannot_shrink_below_roster(scheduling_engine, directory):
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), directory["members"][:3]
    ).session_id
    decision = scheduling_engine.validate_and_update(ADMIN, session_id, SessionPatch(max_participants=2))
    assert decision.reason == ReasonCode.CAPACITY_EXCEEDED


def test_add_and_remove_members_keep_count_in_sync(scheduling_engine, directory, session_factory):
    members = directory["members"]
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), members[:1], max_participants=2
    ).session_id

    assert scheduling_engine.add_member(ADMIN, session_id, members[1]).accepted
    duplicate = scheduling_engine.add_member(ADMIN, session_id, members[1])
    assert duplicate.reason == ReasonCode.MEMBER_CONFLICT
    full = scheduling_engine.add_member(ADMIN, session_id, members[2])
    assert full.reason == ReasonCode.CAPACITY_EXCEEDED

    assert scheduling_engine.remove_member(ADMIN, session_id, members[1]).accepted
    assert scheduling_engine.remove_member(ADMIN, session_id, members[1]).accepted
    assert scheduling_engine.add_member(ADMIN, session_id, members[1]).accepted

    with session_factory() as db:
        session = db.get(models.TrainingSession, session_id)
        assert session.current_participants == 2
        rows = db.query(models.SessionBooking).filter_by(session_id=session_id).all()
        assert len(rows) == 2
        assert all(row.status == models.BookingStatus.confirmed for row in rows)


def test_add_member_rejects_member_busy_elsewhere(scheduling_engine, directory):
    first_trainer, second_trainer = directory["trainers"]
    member = directory["members"][0]
    _create(scheduling_engine, second_trainer, at(9), at(10), [member])
    session_id = _create(
        scheduling_engine, first_trainer, at(9, 30), at(10, 30), directory["members"][1:2]
    ).session_id
    decision = scheduling_engine.add_member(ADMIN, session_id, member)
    assert decision.reason == ReasonCode.MEMBER_CONFLICT
    assert decision.details["members"][0]["member_id"] == member


def test_invariant_violation_rolls_back(scheduling_engine, directory, session_factory):
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), directory["members"][:2]
    ).session_id

    with session_factory() as db:
        session = db.get(models.TrainingSession, session_id)
        session.current_participants = 1
        with pytest.raises(InvariantViolation) as excinfo:
            session_lifecycle.transition_status(
                db, scheduling_engine.index, session, models.SessionStatus.in_progress, ADMIN
            )
        assert excinfo.value.context == {"current_participants": 1, "confirmed": 2}

    with session_factory() as db:
        session = db.get(models.TrainingSession, session_id)
        assert session.status == models.SessionStatus.scheduled
        assert session.current_participants == 2
        assert db.query(models.AuditLog).filter_by(action="session_status_changed").count() == 0


def test_availability_is_idempotent(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    existing = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])

    first = scheduling_engine.check_availability(trainer, at(9, 30), at(10, 30))
    second = scheduling_engine.check_availability(trainer, at(9, 30), at(10, 30))
    assert first == second
    assert not first.available
    assert [conflict.session_id for conflict in first.conflicts] == [existing.session_id]

    assert scheduling_engine.check_availability(trainer, at(10), at(11)).available
    assert scheduling_engine.check_availability(
        trainer, at(9, 30), at(10, 30), exclude_session_id=existing.session_id
    ).available


def test_bulk_availability_and_day_schedule(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    _create(scheduling_engine, trainer, at(9, day=8), at(10, day=8), directory["members"][:1])

    results = scheduling_engine.bulk_availability(trainer, [(at(8), at(9)), (at(9), at(9, 30))])
    assert [result.available for result in results] == [True, False]

    day = scheduling_engine.trainer_day_schedule(trainer, at(0).date())
    assert [(entry.start, entry.end) for entry in day] == [(at(9), at(10))]


def test_slow_availability_check_is_transient_failure(scheduling_engine, directory, monkeypatch):
    ticks = itertools.count(step=1.0)
    monkeypatch.setattr(scheduling_service.time_module, "monotonic", lambda: next(ticks))
    with pytest.raises(SchedulingUnavailable):
        scheduling_engine.check_availability(directory["trainers"][0], at(9), at(10))


def test_reconcile_repairs_drifted_index(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    decision = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    scheduling_engine.index.remove(trainer, decision.session_id)
    scheduling_engine.index.insert(trainer, at(14), at(15), 4242)

    report = scheduling_engine.reconcile()
    assert report["resynced"] == 1
    assert report["participant_drift"] == 0
    assert [entry.session_id for entry in scheduling_engine.index.intervals(trainer)] == [decision.session_id]

    assert scheduling_engine.reconcile()["resynced"] == 0


def test_rebuild_index_skips_cancelled(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    kept = _create(scheduling_engine, trainer, at(9), at(10), directory["members"][:1])
    dropped = _create(scheduling_engine, trainer, at(11), at(12), directory["members"][:1])
    scheduling_engine.cancel(ADMIN, dropped.session_id)
    scheduling_engine.index.clear()

    assert scheduling_engine.rebuild_index() == 1
    assert [entry.session_id for entry in scheduling_engine.index.intervals(trainer)] == [kept.session_id]


def test_reschedule_keeps_members_suspended_after_booking(scheduling_engine, directory, session_factory):
    members = directory["members"]
    session_id = _create(
        scheduling_engine, directory["trainers"][0], at(9), at(10), members[:2]
    ).session_id
    with session_factory() as db:
        db.get(models.Member, members[0]).status = models.MemberStatus.suspended
        db.commit()

    moved = scheduling_engine.validate_and_update(ADMIN, session_id, SessionPatch(location="Studio B"))
    assert moved.accepted
    assert moved.draft.location == "Studio B"
    assert moved.draft.member_ids == tuple(members[:2])

    newcomer = scheduling_engine.add_member(ADMIN, session_id, directory["suspended_member"])
    assert newcomer.reason == ReasonCode.UNAUTHORIZED


def test_storage_failure_is_transient_and_commits_nothing(session_factory, directory):
    def failing_factory():
        db = session_factory()

        def commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        db.commit = commit
        return db

    engine = SchedulingEngine(failing_factory, settings=Settings(), clock=lambda: NOW)
    with pytest.raises(SchedulingUnavailable):
        _create(engine, directory["trainers"][0], at(9), at(10), directory["members"][:2])

    assert len(engine.index) == 0
    with session_factory() as db:
        assert db.query(models.TrainingSession).count() == 0
        assert db.query(models.SessionBooking).count() == 0
        assert db.query(models.AuditLog).count() == 0


def test_storage_failure_on_read_is_transient(session_factory, directory):
    def failing_factory():
        db = session_factory()

        def execute(*_args, **_kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        db.execute = execute
        return db

    engine = SchedulingEngine(failing_factory, settings=Settings(), clock=lambda: NOW)
    with pytest.raises(SchedulingUnavailable):
        engine.rebuild_index()
    assert len(engine.index) == 0

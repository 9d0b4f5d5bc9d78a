from studio_scheduler.core.errors import SchedulingUnavailable
from studio_scheduler.services.authorization import Principal
from studio_scheduler.services.booking_validator import SessionRequest
from studio_scheduler.workers import scheduler as scheduler_module

from conftest import at


def test_get_scheduler_registers_reconcile_job(scheduling_engine):
    scheduler = scheduler_module.get_scheduler(scheduling_engine)
    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["reconcile_index"]
    assert jobs[0].args == (scheduling_engine,)


def test_reconcile_index_reports_and_repairs(scheduling_engine, directory):
    trainer = directory["trainers"][0]
    decision = scheduling_engine.validate_and_create(
        Principal.build("admin"),
        SessionRequest(
            trainer_id=trainer,
            scheduled_start=at(9),
            scheduled_end=at(10),
            location="Studio A",
            max_participants=2,
            member_ids=directory["members"][:1],
        ),
    )
    scheduling_engine.index.clear()

    report = scheduler_module.reconcile_index(scheduling_engine)
    assert report == {"trainers": 1, "resynced": 1, "participant_drift": 0}
    assert scheduling_engine.index.intervals(trainer)[0].session_id == decision.session_id


def test_reconcile_index_swallows_transient_failure(scheduling_engine, monkeypatch):
    def unavailable():
        raise SchedulingUnavailable("down")

    monkeypatch.setattr(scheduling_engine, "reconcile", unavailable)
    assert scheduler_module.reconcile_index(scheduling_engine) is None

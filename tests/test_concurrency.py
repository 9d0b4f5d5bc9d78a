import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio_scheduler.config import Settings
from studio_scheduler.core.errors import SchedulingUnavailable
from studio_scheduler.db.session import Base
from studio_scheduler.db import models
from studio_scheduler.services.authorization import Principal
from studio_scheduler.services.booking_validator import ReasonCode, SessionRequest
from studio_scheduler.services.locks import KeyedLocks
from studio_scheduler.services.scheduling_service import SchedulingEngine

from conftest import NOW, at


@pytest.fixture()
def file_engine(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}", future=True)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    Base.metadata.create_all(bind=engine)
    with factory() as db:
        trainer = models.Trainer(full_name="Anna Petrova")
        members = [models.Member(full_name=f"Member {n}") for n in range(8)]
        db.add_all([trainer, *members])
        db.commit()
        trainer_id, member_ids = trainer.id, [member.id for member in members]
    scheduling_engine = SchedulingEngine(
        factory, settings=Settings(LOCK_TIMEOUT_MS=5000), clock=lambda: NOW
    )
    yield scheduling_engine, factory, trainer_id, member_ids
    engine.dispose()


def test_identical_concurrent_requests_accept_exactly_one(file_engine):
    scheduling_engine, factory, trainer_id, member_ids = file_engine
    admin = Principal.build("admin")
    barrier = threading.Barrier(8)

    def submit(member_id):
        barrier.wait()
        return scheduling_engine.validate_and_create(
            admin,
            SessionRequest(
                trainer_id=trainer_id,
                scheduled_start=at(9),
                scheduled_end=at(10),
                location="Studio A",
                max_participants=4,
                member_ids=[member_id],
            ),
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        decisions = list(pool.map(submit, member_ids))

    accepted = [decision for decision in decisions if decision.accepted]
    assert len(accepted) == 1
    assert {decision.reason for decision in decisions if not decision.accepted} == {ReasonCode.TRAINER_CONFLICT}
    with factory() as db:
        assert db.query(models.TrainingSession).count() == 1
    assert len(scheduling_engine.index) == 1


def test_lock_wait_timeout_is_transient():
    locks = KeyedLocks(timeout=0.01)
    with locks.trainer(1):
        with pytest.raises(SchedulingUnavailable) as excinfo:
            with locks.trainer(1):
                pass
        with locks.trainer(2), locks.members([3, 1, 3]):
            pass
    assert excinfo.value.retry_after > 0
    with locks.booking_scope(1, [1, 2]):
        pass

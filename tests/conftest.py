import os
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from studio_scheduler.config import Settings
from studio_scheduler.db.session import Base
from studio_scheduler.db import models
from studio_scheduler.services.scheduling_service import SchedulingEngine

NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 7) -> datetime:
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def directory(session_factory):
    db = session_factory()
    trainers = [
        models.Trainer(full_name="Anna Petrova", email="anna@example.com"),
        models.Trainer(full_name="Boris Ivanov", email="boris@example.com"),
        models.Trainer(full_name="Retired Coach", email="retired@example.com", is_active=False),
    ]
    members = [models.Member(full_name=f"Member {n}", email=f"member{n}@example.com") for n in range(1, 7)]
    members.append(
        models.Member(full_name="Suspended Member", email="suspended@example.com", status=models.MemberStatus.suspended)
    )
    db.add_all(trainers + members)
    db.commit()
    ids = {
        "trainers": [trainer.id for trainer in trainers[:2]],
        "inactive_trainer": trainers[2].id,
        "members": [member.id for member in members[:6]],
        "suspended_member": members[6].id,
    }
    db.close()
    return ids


@pytest.fixture()
def scheduling_engine(session_factory, directory):
    return SchedulingEngine(session_factory, settings=Settings(), clock=lambda: NOW)

# tests/conftest.py
import os
from datetime import timedelta

# Settings are read at import time by medqueue.main
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from medqueue.db.base import Base, get_session_factory
import medqueue.db.models  # noqa: F401
from medqueue.db.crud.appointment import AppointmentRepository
from medqueue.db.crud.queue import QueueTicketRepository
from medqueue.services.queue import QueueEngine
from medqueue.services.reassignment import ReassignmentCoordinator
from medqueue.services.scheduler import Scheduler
from medqueue.services.validation import SchedulingPolicy
from tests._stubs import (
    DOCTOR_ID,
    NOW,
    OTHER_DOCTOR_ID,
    OTHER_PATIENT_ID,
    PATIENT_ID,
    THIRD_DOCTOR_ID,
    THIRD_PATIENT_ID,
    FakeIdentityVerifier,
    FixedClock,
)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return await get_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def policy():
    return SchedulingPolicy()


@pytest.fixture
def identity():
    fake = FakeIdentityVerifier()
    fake.add_doctor(DOCTOR_ID, specialty="cardiology")
    fake.add_doctor(OTHER_DOCTOR_ID, specialty="cardiology")
    fake.add_doctor(THIRD_DOCTOR_ID, specialty="dermatology")
    fake.add_patient(PATIENT_ID)
    fake.add_patient(OTHER_PATIENT_ID)
    fake.add_patient(THIRD_PATIENT_ID)
    return fake


@pytest.fixture
def scheduler(session, identity, policy, clock):
    return Scheduler(
        AppointmentRepository(session),
        QueueTicketRepository(session),
        identity,
        policy=policy,
        clock=clock,
    )


@pytest.fixture
def queue(scheduler, clock):
    return QueueEngine(scheduler.tickets, scheduler.appointments, scheduler, clock=clock)


@pytest.fixture
def coordinator(scheduler, identity):
    return ReassignmentCoordinator(scheduler, identity)


@pytest.fixture
def book(scheduler):
    """Create an appointment `minutes` from the fixed clock and return its id."""

    async def _book(minutes, doctor_id=DOCTOR_ID, patient_id=PATIENT_ID):
        start = scheduler.clock() + timedelta(minutes=minutes)
        appointment = await scheduler.create(patient_id, doctor_id, start, credential="token")
        return appointment.id

    return _book

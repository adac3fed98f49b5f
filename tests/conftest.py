"""Shared test fixtures and helpers."""

import os

# Must be set before the package reads its configuration
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.setdefault("CRON_SECRET", "")
os.environ.setdefault("OPERATING_TIMEZONE", "Asia/Ho_Chi_Minh")

from datetime import date, time
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mechanic_booking.core.config import AppConfig, DatabaseConfig
from mechanic_booking.core.security import Principal
from mechanic_booking.db.base import build_engine, get_db
from mechanic_booking.db.init_db import init_db
from mechanic_booking.db.models.availability import WorkingHoursWindow
from mechanic_booking.db.models.service import Service
from mechanic_booking.db.models.user import User
from mechanic_booking.schemas.appointment import AppointmentCreate
from mechanic_booking.services.appointments import AppointmentManager
from mechanic_booking.services.notifications import Notifier

BOOKING_DATE = date(2024, 6, 1)

CUSTOMER_ID = 1
OTHER_CUSTOMER_ID = 2
MECHANIC_ID = 10
SECOND_MECHANIC_ID = 11
ADMIN_ID = 99

OIL_CHANGE = 1      # 60 minutes
BRAKE_OVERHAUL = 2  # 130 minutes
INSPECTION = 3      # 30 minutes

CUSTOMER = Principal(CUSTOMER_ID, "customer")
OTHER_CUSTOMER = Principal(OTHER_CUSTOMER_ID, "customer")
MECHANIC = Principal(MECHANIC_ID, "mechanic")
SECOND_MECHANIC = Principal(SECOND_MECHANIC_ID, "mechanic")
ADMIN = Principal(ADMIN_ID, "admin")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def appointment_created(self, appointment) -> None:
        self.events.append(("created", appointment.id, None))

    def appointment_updated(self, appointment, previous_status: Optional[str]) -> None:
        self.events.append(("updated", appointment.id, previous_status))


@pytest.fixture
def engine():
    config = AppConfig(database=DatabaseConfig(url="sqlite://", log_slow_queries=False))
    engine = build_engine(config, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    """Customers, two mechanics, an admin, three services and working hours on BOOKING_DATE."""
    db.add_all([
        User(id=CUSTOMER_ID, full_name="Nguyen Van An", email="an@example.com", role="customer"),
        User(id=OTHER_CUSTOMER_ID, full_name="Tran Thi Binh", email="binh@example.com", role="customer"),
        User(id=MECHANIC_ID, full_name="Le Van Cuong", role="mechanic"),
        User(id=SECOND_MECHANIC_ID, full_name="Pham Van Dung", role="mechanic"),
        User(id=ADMIN_ID, full_name="Admin", role="admin"),
    ])
    db.add_all([
        Service(id=OIL_CHANGE, name="Oil change", price=150000, estimated_minutes=60),
        Service(id=BRAKE_OVERHAUL, name="Brake overhaul", price=900000, estimated_minutes=130),
        Service(id=INSPECTION, name="Inspection", price=50000, estimated_minutes=30),
    ])
    db.add_all([
        WorkingHoursWindow(
            mechanic_id=MECHANIC_ID, work_date=BOOKING_DATE, start_time=time(8, 0), end_time=time(12, 0)
        ),
        WorkingHoursWindow(
            mechanic_id=SECOND_MECHANIC_ID, work_date=BOOKING_DATE, start_time=time(9, 0), end_time=time(11, 0)
        ),
    ])
    db.commit()
    return db


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(seeded, notifier):
    return AppointmentManager(seeded, notifier=notifier)


@pytest.fixture
def client(seeded, session_factory):
    from mechanic_booking.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def headers_for(principal: Principal) -> dict:
    return {"X-User-Id": str(principal.user_id), "X-User-Role": principal.role}


def make_booking(
    appointment_date: str = "2024-06-01 09:00:00",
    services=None,
    mechanic_id: Optional[int] = MECHANIC_ID,
    license_plate: str = "51A-123.45",
    **extra,
) -> AppointmentCreate:
    """Helper to build a create payload the way clients send it."""
    payload = {
        "appointmentDate": appointment_date,
        "services": services if services is not None else [OIL_CHANGE],
        "mechanicId": mechanic_id,
        "licensePlate": license_plate,
        "brand": "Honda",
        "model": "City",
    }
    payload.update(extra)
    return AppointmentCreate(**payload)

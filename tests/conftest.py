import os
from datetime import date, time, timedelta

import pytest
from fastapi.testclient import TestClient

os.environ["TESTING"] = "1"

from hospital_scheduling.main import app
from hospital_scheduling.api.deps import get_clock
from hospital_scheduling.core.database import Base, SessionLocal, engine, get_db, get_redis
from hospital_scheduling.core.security import UserRole
from hospital_scheduling.models.user import User
from hospital_scheduling.models.availability import Weekday
from hospital_scheduling.schemas.availability import DayAvailability, WeeklyTemplate
from hospital_scheduling.services.availability_service import AvailabilityService
from hospital_scheduling.services.booking_service import BookingService
from hospital_scheduling.services.user_directory import DirectoryUser

# A fixed Wednesday; every date in the suite is relative to it
TODAY = date(2029, 1, 3)
YESTERDAY = TODAY - timedelta(days=1)
NEXT_MONDAY = TODAY + timedelta(days=(7 - TODAY.weekday()) % 7 or 7)
NEXT_TUESDAY = NEXT_MONDAY + timedelta(days=1)

NINE = time(9, 0)
TEN = time(10, 0)
ELEVEN = time(11, 0)


def fixed_clock() -> date:
    return TODAY


class FakeRedis:
    """In-memory stand-in for the few Redis commands the rate limiter uses."""

    def __init__(self):
        self.data = {}

    def setex(self, key, seconds, value):
        self.data[key] = str(value)
        return True

    def get(self, key):
        return self.data.get(key)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])


def override_get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(test_db, fake_redis):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def create_user(db, role: UserRole, email: str, full_name: str = "Test User") -> DirectoryUser:
    user = User(email=email, full_name=full_name, role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return DirectoryUser(id=user.id, role=user.role, name=user.full_name, email=user.email)


@pytest.fixture
def doctor(db):
    return create_user(db, UserRole.DOCTOR, "doctor@example.com", "Dr. Grey")


@pytest.fixture
def other_doctor(db):
    return create_user(db, UserRole.DOCTOR, "doctor2@example.com", "Dr. Shepherd")


@pytest.fixture
def patient(db):
    return create_user(db, UserRole.PATIENT, "patient@example.com", "Pat One")


@pytest.fixture
def other_patient(db):
    return create_user(db, UserRole.PATIENT, "patient2@example.com", "Pat Two")


@pytest.fixture
def admin(db):
    return create_user(db, UserRole.ADMIN, "admin@example.com", "Admin")


def monday_template(*slots: time) -> WeeklyTemplate:
    return WeeklyTemplate(days={
        Weekday.MONDAY: DayAvailability(available=True, slots=list(slots or (NINE, TEN)))
    })


@pytest.fixture
def monday_schedule(db, doctor):
    """Doctor works Mondays at 09:00 and 10:00."""
    return AvailabilityService(db).set_template(doctor.id, doctor.id, monday_template(NINE, TEN))


def book(db, patient, doctor, day=NEXT_MONDAY, at=NINE, requested_by=None, **fields):
    """Book through the real coordinator with the suite's fixed clock."""
    return BookingService(db, clock=fixed_clock).book(
        patient_id=patient.id,
        doctor_id=doctor.id,
        appointment_date=day,
        appointment_time=at,
        department=fields.get("department", "Cardiology"),
        appointment_type=fields.get("appointment_type", "Consultation"),
        notes=fields.get("notes"),
        requested_by=requested_by,
    )

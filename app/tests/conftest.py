from __future__ import annotations

import os

os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date, datetime, timezone  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app import models_appointment  # noqa: E402,F401
from app.database import Base, build_engine  # noqa: E402
from app.domain.scheduling.schemas import default_weekly_schedule  # noqa: E402
from app.models import Doctor, Patient, Tenant  # noqa: E402
from app.models_appointment import Appointment, DoctorSchedule  # noqa: E402

# Monday 2 March 2026, 08:00 at a UTC clinic
MONDAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def at(day: date, hhmm: str) -> datetime:
    hour, minute = hhmm.split(":")
    return datetime(day.year, day.month, day.day, int(hour), int(minute), tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'clinic_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """One UTC clinic, a doctor with the default week (2 patients per slot) and five patients"""
    tenant = Tenant(
        name="Sunrise Clinic",
        timezone="UTC",
        booking_slug="sunrise",
        public_booking_enabled=True,
        require_email=False,
        require_phone_number=True,
        confirmation_message="See you soon!",
    )
    db.add(tenant)
    db.flush()

    doctor = Doctor(tenant_id=tenant.id, name="Dr. Asha Rao", email="asha@sunrise.test")
    other_doctor = Doctor(tenant_id=tenant.id, name="Dr. Leo Park")
    db.add_all([doctor, other_doctor])
    db.flush()

    schedule = DoctorSchedule(
        tenant_id=tenant.id,
        doctor_id=doctor.id,
        weekly_schedule=[d.model_dump(mode="json") for d in default_weekly_schedule()],
        leave_dates=[],
        slot_duration=30,
        buffer_time=0,
        max_patients_per_slot=2,
        advance_booking_days=30,
        is_accepting_appointments=True,
        accepts_online_booking=True,
        specialization="General Medicine",
    )
    db.add(schedule)

    patients = [
        Patient(
            tenant_id=tenant.id,
            first_name=f"Patient{i}",
            last_name="Test",
            email=f"patient{i}@example.com",
            phone=f"+1555000000{i}",
        )
        for i in range(5)
    ]
    db.add_all(patients)
    db.commit()

    return SimpleNamespace(
        tenant_id=tenant.id,
        doctor_id=doctor.id,
        other_doctor_id=other_doctor.id,
        schedule_id=schedule.id,
        patient_ids=[p.id for p in patients],
    )


@pytest.fixture
def make_appointment(db, seed):
    """Insert an appointment row directly, bypassing the booking rules"""

    def _make(day: date, start_time: str, patient_index: int = 0, **fields) -> Appointment:
        values = {
            "tenant_id": seed.tenant_id,
            "doctor_id": seed.doctor_id,
            "patient_id": seed.patient_ids[patient_index],
            "appointment_date": day,
            "start_time": start_time,
            "duration": 30,
            "slot_ordinal": 0,
            "status": "scheduled",
        }
        values.update(fields)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def queued_notifications():
    """Capture notification jobs instead of pushing them to Redis"""
    sent = []

    async def fake_enqueue(event, payload):
        sent.append((event, payload))
        return True

    with patch("app.services.notification_service.enqueue_notification", new=fake_enqueue):
        yield sent


@pytest.fixture
def client(session_factory, seed, queued_notifications):
    from fastapi.testclient import TestClient

    from app.database import get_db
    from app.main import app
    from app.rate_limiter import public_booking_rate_limiter

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[public_booking_rate_limiter] = no_rate_limit
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers(seed):
    return {"X-Tenant-ID": str(seed.tenant_id), "X-User-ID": "staff-1"}

"""
Scheduling Models - doctor availability templates and appointments
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_public_id

# Status workflow: scheduled → checked-in → in-progress → completed
# cancelled / no-show are reachable from scheduled or checked-in
APPOINTMENT_STATUSES = (
    "scheduled",
    "checked-in",
    "in-progress",
    "completed",
    "cancelled",
    "no-show",
)
# Statuses that no longer hold a seat in a slot
INACTIVE_STATUSES = ("cancelled", "no-show")
TERMINAL_STATUSES = ("completed", "cancelled", "no-show")


class DoctorSchedule(Base):
    """Weekly availability template for one doctor in one tenant"""

    __tablename__ = "doctor_schedules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "doctor_id", name="uq_doctor_schedule_tenant_doctor"),
        Index("ix_doctor_schedules_online", "tenant_id", "accepts_online_booking"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Embedded value: [{"day": "monday", "isWorking": true,
    #                   "slots": [{"startTime": "09:00", "endTime": "13:00"}]}, ...]
    weekly_schedule = Column(JSON, nullable=False, default=list)
    # Embedded value: [{"date": "2026-12-25", "reason": "Holiday"}]
    leave_dates = Column(JSON, nullable=False, default=list)

    slot_duration = Column(Integer, default=30, nullable=False)  # minutes
    buffer_time = Column(Integer, default=0, nullable=False)  # minutes between slot starts
    max_patients_per_slot = Column(Integer, default=1, nullable=False)
    advance_booking_days = Column(Integer, default=30, nullable=False)
    is_accepting_appointments = Column(Boolean, default=True, nullable=False)
    accepts_online_booking = Column(Boolean, default=False, nullable=False)

    consultation_fee = Column(Float, default=0, nullable=False)
    specialization = Column(String(255), nullable=True)
    qualifications = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="schedule")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # One row per seat: slot_ordinal ranges over [0, max_patients_per_slot)
        # and is NULL once the appointment stops occupying the slot.
        UniqueConstraint(
            "tenant_id",
            "doctor_id",
            "appointment_date",
            "start_time",
            "slot_ordinal",
            name="uq_appointment_slot_ordinal",
        ),
        UniqueConstraint(
            "tenant_id", "appointment_date", "token_number", name="uq_appointment_daily_token"
        ),
        Index("ix_appointments_tenant_date", "tenant_id", "appointment_date"),
        Index("ix_appointments_doctor_date", "tenant_id", "doctor_id", "appointment_date"),
        Index("ix_appointments_tenant_status", "tenant_id", "status"),
        Index("ix_appointments_token_display", "tenant_id", "token_display_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)

    # Calendar day and time-of-day are stored separately
    appointment_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=True)  # HH:MM
    duration = Column(Integer, default=30, nullable=False)  # minutes
    slot_ordinal = Column(Integer, nullable=True)

    type = Column(String(50), default="consultation", nullable=False)
    status = Column(String(20), default="scheduled", nullable=False)
    priority = Column(String(20), default="normal", nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Token queue
    token_number = Column(Integer, nullable=True)  # daily sequence per tenant, starts at 1
    token_display_number = Column(String(10), nullable=True)  # e.g. T-007
    estimated_wait_minutes = Column(Integer, nullable=True)  # advisory
    checked_in_at = Column(DateTime, nullable=True)
    called_at = Column(DateTime, nullable=True)
    serving_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    rescheduled_from_date = Column(Date, nullable=True)
    rescheduled_from_time = Column(String(5), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor")
    patient = relationship("Patient")

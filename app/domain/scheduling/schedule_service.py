"""Schedule service - Business logic for doctor schedule templates"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models_appointment import DoctorSchedule
from .exceptions import NotFoundError, TransientConflictError
from .repository import ScheduleRepository
from .schemas import (
    DoctorScheduleCreate,
    DoctorScheduleResponse,
    DoctorScheduleUpdate,
    LeaveDate,
    PublicDoctor,
    default_weekly_schedule,
    load_weekly_schedule,
)

logger = logging.getLogger(__name__)

# API field -> column, for the fields that are copied as-is
SCALAR_FIELDS = {
    "slotDuration": "slot_duration",
    "bufferTime": "buffer_time",
    "maxPatientsPerSlot": "max_patients_per_slot",
    "advanceBookingDays": "advance_booking_days",
    "isAcceptingAppointments": "is_accepting_appointments",
    "acceptsOnlineBooking": "accepts_online_booking",
    "consultationFee": "consultation_fee",
    "specialization": "specialization",
    "qualifications": "qualifications",
    "bio": "bio",
}


def dump_weekly_schedule(days) -> list[dict]:
    return [day.model_dump(mode="json") for day in days]


def dump_leave_dates(entries: list[LeaveDate]) -> list[dict]:
    # One entry per date, latest reason wins, ascending
    by_date = {entry.date: entry for entry in entries}
    return [by_date[d].model_dump(mode="json") for d in sorted(by_date)]


def schedule_to_response(schedule: DoctorSchedule) -> DoctorScheduleResponse:
    return DoctorScheduleResponse(
        id=schedule.id,
        doctorId=schedule.doctor_id,
        doctorName=schedule.doctor.name if schedule.doctor else None,
        weeklySchedule=load_weekly_schedule(schedule.weekly_schedule),
        slotDuration=schedule.slot_duration,
        bufferTime=schedule.buffer_time,
        maxPatientsPerSlot=schedule.max_patients_per_slot,
        advanceBookingDays=schedule.advance_booking_days,
        isAcceptingAppointments=schedule.is_accepting_appointments,
        acceptsOnlineBooking=schedule.accepts_online_booking,
        consultationFee=schedule.consultation_fee,
        specialization=schedule.specialization,
        qualifications=schedule.qualifications,
        bio=schedule.bio,
        leaveDates=[LeaveDate.model_validate(e) for e in schedule.leave_dates or []],
    )


def schedule_to_public_doctor(schedule: DoctorSchedule) -> PublicDoctor:
    return PublicDoctor(
        id=schedule.doctor_id,
        name=schedule.doctor.name if schedule.doctor else "",
        specialization=schedule.specialization,
        qualifications=schedule.qualifications,
        bio=schedule.bio,
        consultationFee=schedule.consultation_fee,
        slotDuration=schedule.slot_duration,
        advanceBookingDays=schedule.advance_booking_days,
    )


class ScheduleService:
    """Service layer for doctor schedule operations"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ScheduleRepository()

    def list_schedules(
        self, tenant_id: int, doctor_id: Optional[int] = None, online_only: bool = False
    ) -> list[DoctorSchedule]:
        return self.repo.list_schedules(self.db, tenant_id, doctor_id, online_only)

    def get_schedule(self, tenant_id: int, doctor_id: int) -> DoctorSchedule:
        schedule = self.repo.get_schedule(self.db, tenant_id, doctor_id)
        if not schedule:
            raise NotFoundError("Schedule not found for this doctor", code="schedule_not_found")
        return schedule

    def upsert_schedule(self, tenant_id: int, data: DoctorScheduleCreate) -> tuple[DoctorSchedule, bool]:
        """Create the doctor's schedule, or replace it if one exists. Returns (schedule, created)."""
        doctor = self.repo.get_doctor(self.db, tenant_id, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")

        weekly = data.weeklySchedule if data.weeklySchedule is not None else default_weekly_schedule()
        fields = {column: getattr(data, name) for name, column in SCALAR_FIELDS.items()}
        fields["weekly_schedule"] = dump_weekly_schedule(weekly)
        fields["leave_dates"] = dump_leave_dates(data.leaveDates)

        existing = self.repo.get_schedule(self.db, tenant_id, doctor.id)
        if existing:
            logger.info(f"📝 Replacing schedule for doctor {doctor.id} (tenant {tenant_id})")
            return self.repo.update_schedule(self.db, existing, **fields), False

        try:
            schedule = self.repo.create_schedule(self.db, tenant_id, doctor.id, **fields)
        except IntegrityError:
            self.db.rollback()
            raise TransientConflictError("Schedule was created concurrently, please retry")

        logger.info(f"✅ Created schedule {schedule.id} for doctor {doctor.id} (tenant {tenant_id})")
        return schedule, True

    def update_schedule(self, tenant_id: int, doctor_id: int, data: DoctorScheduleUpdate) -> DoctorSchedule:
        """Patch only the fields that were sent"""
        schedule = self.get_schedule(tenant_id, doctor_id)

        updates = {}
        for name, column in SCALAR_FIELDS.items():
            value = getattr(data, name)
            if value is not None:
                updates[column] = value
        if data.weeklySchedule is not None:
            updates["weekly_schedule"] = dump_weekly_schedule(data.weeklySchedule)
        if data.leaveDates is not None:
            updates["leave_dates"] = dump_leave_dates(data.leaveDates)

        if not updates:
            return schedule

        logger.info(f"📝 Updating schedule for doctor {doctor_id}: {sorted(updates)}")
        return self.repo.update_schedule(self.db, schedule, **updates)

    def delete_schedule(self, tenant_id: int, doctor_id: int) -> None:
        schedule = self.get_schedule(tenant_id, doctor_id)
        self.repo.delete_schedule(self.db, schedule)
        logger.info(f"🗑️ Deleted schedule for doctor {doctor_id} (tenant {tenant_id})")

    def add_leave_date(
        self, tenant_id: int, doctor_id: int, day: date, reason: Optional[str] = None
    ) -> DoctorSchedule:
        schedule = self.get_schedule(tenant_id, doctor_id)
        entries = [LeaveDate.model_validate(e) for e in schedule.leave_dates or []]
        entries.append(LeaveDate(date=day, reason=reason))
        return self.repo.update_schedule(self.db, schedule, leave_dates=dump_leave_dates(entries))

    def remove_leave_date(self, tenant_id: int, doctor_id: int, day: date) -> DoctorSchedule:
        schedule = self.get_schedule(tenant_id, doctor_id)
        entries = [
            entry
            for entry in (LeaveDate.model_validate(e) for e in schedule.leave_dates or [])
            if entry.date != day
        ]
        return self.repo.update_schedule(self.db, schedule, leave_dates=dump_leave_dates(entries))

"""Availability service - what can be booked for a doctor on a given date"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ...config import SAME_DAY_LEAD_MINUTES
from ...models import Tenant
from ...models_appointment import DoctorSchedule
from ...shared.validators import parse_hhmm
from .exceptions import NotFoundError
from .repository import AppointmentRepository, ScheduleRepository
from .schemas import LeaveDate, load_weekly_schedule
from .slot_generator import find_day_schedule, generate_slots

logger = logging.getLogger(__name__)

REASON_MESSAGES = {
    "no_schedule": "No schedule configured for this doctor",
    "online_booking_disabled": "Doctor is not accepting online appointments",
    "not_accepting": "Doctor is not accepting appointments",
    "not_available_this_day": "Doctor is not available on this day",
    "on_leave": "Doctor is on leave on this date",
    "in_the_past": "Cannot book appointments in the past",
    "beyond_advance_window": "Cannot book that far in advance",
}


@dataclass
class AvailabilityResult:
    day: date
    doctor_id: int
    slot_duration: int
    slots: list[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason) if self.reason else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def tenant_zone(tenant: Tenant) -> ZoneInfo:
    try:
        return ZoneInfo(tenant.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ Unknown timezone '{tenant.timezone}' for tenant {tenant.id}, using UTC")
        return ZoneInfo("UTC")


def local_now(tenant: Tenant, now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time at the clinic. Naive ``now`` values are read as UTC."""
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tenant_zone(tenant))


def is_leave_date(schedule: DoctorSchedule, day: date) -> bool:
    for entry in schedule.leave_dates or []:
        if LeaveDate.model_validate(entry).date == day:
            return True
    return False


def unavailability_reason(schedule: DoctorSchedule, day: date, today: date) -> Optional[str]:
    """
    First rule that blocks ``day`` entirely, checked in order: working day,
    leave, past, advance window. None when the day is open.
    """
    day_schedule = find_day_schedule(load_weekly_schedule(schedule.weekly_schedule), day)
    if day_schedule is None or not day_schedule.isWorking or not day_schedule.slots:
        return "not_available_this_day"

    if is_leave_date(schedule, day):
        return "on_leave"

    if day < today:
        return "in_the_past"

    if day > today + timedelta(days=schedule.advance_booking_days):
        return "beyond_advance_window"

    return None


def candidate_slots(schedule: DoctorSchedule, day: date) -> list[str]:
    day_schedule = find_day_schedule(load_weekly_schedule(schedule.weekly_schedule), day)
    return generate_slots(day_schedule, schedule.slot_duration, schedule.buffer_time)


def meets_lead_time(start_time: str, now_local: datetime, lead_minutes: int) -> bool:
    """Whether a slot today starts at least ``lead_minutes`` after ``now_local``"""
    slot_start = now_local.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(
        minutes=parse_hhmm(start_time)
    )
    return slot_start - now_local >= timedelta(minutes=lead_minutes)


class AvailabilityService:
    """Answers "what can be booked" for the staff dashboard and the public booking page"""

    def __init__(self, db: Session, lead_minutes: int = SAME_DAY_LEAD_MINUTES):
        self.db = db
        self.repo = ScheduleRepository()
        self.appointments = AppointmentRepository()
        self.lead_minutes = lead_minutes

    def get_available_slots(
        self, tenant_id: int, doctor_id: int, day: date, now: Optional[datetime] = None
    ) -> AvailabilityResult:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise NotFoundError("Clinic not found", code="clinic_not_found")

        schedule = self.repo.get_schedule(self.db, tenant.id, doctor_id)
        return self.compute(tenant, doctor_id, schedule, day, now)

    def get_public_available_slots(
        self, slug: str, doctor_id: int, day: date, now: Optional[datetime] = None
    ) -> AvailabilityResult:
        tenant = self.repo.get_tenant_by_slug(self.db, slug)
        if not tenant:
            raise NotFoundError(
                "Clinic not found or public booking is disabled", code="clinic_not_found"
            )

        schedule = self.repo.get_schedule(self.db, tenant.id, doctor_id)
        return self.compute(tenant, doctor_id, schedule, day, now, public=True)

    def compute(
        self,
        tenant: Tenant,
        doctor_id: int,
        schedule: Optional[DoctorSchedule],
        day: date,
        now: Optional[datetime] = None,
        public: bool = False,
    ) -> AvailabilityResult:
        """Shared routine behind the authenticated and public slot queries"""
        if schedule is None:
            return AvailabilityResult(day, doctor_id, 30, reason="no_schedule")

        result = AvailabilityResult(day, doctor_id, schedule.slot_duration)

        if public and not (schedule.accepts_online_booking and schedule.is_accepting_appointments):
            result.reason = "online_booking_disabled"
            return result

        now_local = local_now(tenant, now)
        today = now_local.date()

        reason = unavailability_reason(schedule, day, today)
        if reason:
            result.reason = reason
            return result

        candidates = candidate_slots(schedule, day)
        booked = self.appointments.booked_counts_by_start_time(
            self.db, tenant.id, doctor_id, day
        )
        open_slots = [s for s in candidates if booked.get(s, 0) < schedule.max_patients_per_slot]

        if day == today:
            open_slots = [s for s in open_slots if meets_lead_time(s, now_local, self.lead_minutes)]

        result.slots = sorted(open_slots)
        logger.debug(
            f"📅 {len(result.slots)}/{len(candidates)} slots open for doctor {doctor_id} on {day}"
        )
        return result

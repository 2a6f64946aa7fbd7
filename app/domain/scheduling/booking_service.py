"""Booking service - commits appointments with an at-most-capacity guarantee per slot"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ...config import (
    BOOKING_MAX_ATTEMPTS,
    DEFAULT_CONFIRMATION_MESSAGE,
    SAME_DAY_LEAD_MINUTES,
    SLOT_LOCK_TIMEOUT_SECONDS,
)
from ...models import Tenant
from ...models_appointment import APPOINTMENT_STATUSES, Appointment, DoctorSchedule
from ...services.notification_service import AppointmentNotifier, notify_safely
from .availability_service import (
    REASON_MESSAGES,
    candidate_slots,
    local_now,
    meets_lead_time,
    unavailability_reason,
)
from .exceptions import (
    DoctorUnavailableError,
    NotFoundError,
    SchedulingValidationError,
    SlotFullError,
    TransientConflictError,
    TransientStoreError,
)
from .locks import slot_locks
from .repository import AppointmentRepository, ScheduleRepository
from .schemas import AppointmentCreate, AppointmentUpdate, PublicBookingCreate
from .slot_generator import slot_end_time

logger = logging.getLogger(__name__)


def split_name(full_name: str) -> tuple[str, Optional[str]]:
    """Split "Jane Q Doe" into ("Jane Q", "Doe")"""
    parts = full_name.strip().split()
    if len(parts) <= 1:
        return (parts[0] if parts else full_name.strip()), None
    return " ".join(parts[:-1]), parts[-1]


class BookingService:
    """Service layer for booking, rescheduling and reading appointments"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[AppointmentNotifier] = None,
        max_attempts: int = BOOKING_MAX_ATTEMPTS,
        lock_timeout: float = SLOT_LOCK_TIMEOUT_SECONDS,
        lead_minutes: int = SAME_DAY_LEAD_MINUTES,
    ):
        self.db = db
        self.repo = ScheduleRepository()
        self.appointments = AppointmentRepository()
        self.notifier = notifier or AppointmentNotifier()
        self.max_attempts = max_attempts
        self.lock_timeout = lock_timeout
        self.lead_minutes = lead_minutes

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_appointment(self, tenant_id: int, appointment_id: int) -> Appointment:
        appointment = self.appointments.get_appointment(self.db, tenant_id, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_appointments(self, tenant_id: int, page: int = 1, limit: int = 50, **filters) -> dict:
        status = filters.get("status")
        if status and status not in APPOINTMENT_STATUSES:
            raise SchedulingValidationError(
                f"Unknown status '{status}'", code="invalid_status"
            )
        page = max(page, 1)
        limit = min(max(limit, 1), 200)
        items, total = self.appointments.list_appointments(
            self.db, tenant_id, page=page, limit=limit, **filters
        )
        return {
            "data": items,
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        }

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_appointment(
        self, tenant_id: int, appointment_id: int, data: AppointmentUpdate
    ) -> Appointment:
        """Patch only the fields that were sent"""
        appointment = self.get_appointment(tenant_id, appointment_id)

        updates = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not updates:
            return appointment

        for field, value in updates.items():
            setattr(appointment, field, value)
        try:
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.error(f"❌ Store error while updating appointment {appointment_id}: {e}")
            raise TransientStoreError("The appointment store is unavailable, please retry") from e
        self.db.refresh(appointment)

        logger.info(f"📝 Updated appointment {appointment.id}: {sorted(updates)}")
        return appointment

    def delete_appointment(self, tenant_id: int, appointment_id: int) -> None:
        """
        Remove an appointment that never entered the queue. Rows holding a
        token stay so the day's token sequence keeps no gaps; cancel those.
        """
        appointment = self.appointments.get_appointment(
            self.db, tenant_id, appointment_id, for_update=True
        )
        if not appointment:
            raise NotFoundError("Appointment not found")

        if appointment.token_number is not None:
            self.db.rollback()
            raise SchedulingValidationError(
                f"Appointment {appointment.token_display_number} has a queue token and "
                f"cannot be deleted; cancel it instead",
                code="token_assigned",
            )

        self.appointments.delete_appointment(self.db, appointment)
        logger.info(f"🗑️ Deleted appointment {appointment_id} (tenant {tenant_id})")

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def book_appointment(
        self, tenant_id: int, data: AppointmentCreate, now: Optional[datetime] = None
    ) -> Appointment:
        """Book a slot from the staff dashboard"""
        tenant = self._get_tenant(tenant_id)

        patient = self.repo.get_patient(self.db, tenant.id, data.patientId)
        if not patient:
            raise NotFoundError("Patient not found")

        doctor = self.repo.get_doctor(self.db, tenant.id, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")

        schedule = self.repo.get_schedule(self.db, tenant.id, doctor.id)
        self._validate_slot(tenant, schedule, data.appointmentDate, data.startTime, now)

        def build(ordinal: int) -> Appointment:
            appointment = Appointment(
                tenant_id=tenant.id,
                doctor_id=doctor.id,
                patient_id=patient.id,
                appointment_date=data.appointmentDate,
                start_time=data.startTime,
                end_time=slot_end_time(data.startTime, schedule.slot_duration),
                duration=schedule.slot_duration,
                slot_ordinal=ordinal,
                type=data.type,
                status="scheduled",
                priority=data.priority,
                reason=data.reason,
                notes=data.notes,
            )
            self.db.add(appointment)
            return appointment

        appointment = self._commit_with_seat(
            tenant.id, doctor.id, data.appointmentDate, data.startTime, build
        )
        logger.info(
            f"✅ Booked appointment {appointment.id} for patient {patient.id} with doctor "
            f"{doctor.id} on {appointment.appointment_date} at {appointment.start_time}"
        )
        notify_safely(self.notifier.notify_booked, appointment)
        return appointment

    def book_public_appointment(
        self, data: PublicBookingCreate, now: Optional[datetime] = None
    ) -> tuple[Appointment, str]:
        """
        Book from the clinic's public page. The patient is matched by e-mail or
        phone, or created. Returns the appointment and the clinic's confirmation text.
        """
        tenant = self.repo.get_tenant_by_slug(self.db, data.slug)
        if not tenant:
            raise NotFoundError(
                "Clinic not found or public booking is disabled", code="clinic_not_found"
            )

        if tenant.require_email and not data.patientEmail:
            raise SchedulingValidationError("Email is required", code="missing_contact")
        if tenant.require_phone_number and not data.patientPhone:
            raise SchedulingValidationError("Phone number is required", code="missing_contact")

        doctor = self.repo.get_doctor(self.db, tenant.id, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")

        schedule = self.repo.get_schedule(self.db, tenant.id, doctor.id)
        self._validate_slot(tenant, schedule, data.date, data.time, now, public=True)

        def build(ordinal: int) -> Appointment:
            patient = self.repo.find_patient_by_contact(
                self.db, tenant.id, data.patientEmail, data.patientPhone
            )
            if not patient:
                first_name, last_name = split_name(data.patientName)
                patient = self.repo.create_patient(
                    self.db,
                    tenant.id,
                    first_name=first_name,
                    last_name=last_name,
                    email=data.patientEmail,
                    phone=data.patientPhone,
                    notes="Created via online booking",
                )
                logger.info(f"👤 Created patient {patient.id} from online booking")

            appointment = Appointment(
                tenant_id=tenant.id,
                doctor_id=doctor.id,
                patient_id=patient.id,
                appointment_date=data.date,
                start_time=data.time,
                end_time=slot_end_time(data.time, schedule.slot_duration),
                duration=schedule.slot_duration,
                slot_ordinal=ordinal,
                type="consultation",
                status="scheduled",
                reason=data.notes or "Online booking",
                notes="Booked via public online booking page",
            )
            self.db.add(appointment)
            return appointment

        appointment = self._commit_with_seat(tenant.id, doctor.id, data.date, data.time, build)
        logger.info(
            f"✅ Online booking {appointment.id} at clinic {tenant.id} for doctor {doctor.id} "
            f"on {appointment.appointment_date} at {appointment.start_time}"
        )
        notify_safely(self.notifier.notify_booked, appointment)
        return appointment, tenant.confirmation_message or DEFAULT_CONFIRMATION_MESSAGE

    def reschedule_appointment(
        self,
        tenant_id: int,
        appointment_id: int,
        new_date: date,
        new_start_time: str,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Move a scheduled appointment, re-checking capacity at the new slot"""
        tenant = self._get_tenant(tenant_id)
        appointment = self.get_appointment(tenant.id, appointment_id)

        if appointment.status != "scheduled":
            raise SchedulingValidationError(
                f"Cannot reschedule an appointment that is {appointment.status}",
                code="invalid_transition",
            )

        old_date, old_time = appointment.appointment_date, appointment.start_time
        if old_date == new_date and old_time == new_start_time:
            return appointment

        schedule = self.repo.get_schedule(self.db, tenant.id, appointment.doctor_id)
        self._validate_slot(tenant, schedule, new_date, new_start_time, now)

        def move(ordinal: int) -> Appointment:
            moving = self.appointments.get_appointment(
                self.db, tenant.id, appointment_id, for_update=True
            )
            if moving is None or moving.status != "scheduled":
                raise SchedulingValidationError(
                    "Appointment changed while rescheduling", code="invalid_transition"
                )
            moving.rescheduled_from_date = old_date
            moving.rescheduled_from_time = old_time
            moving.appointment_date = new_date
            moving.start_time = new_start_time
            moving.end_time = slot_end_time(new_start_time, schedule.slot_duration)
            moving.duration = schedule.slot_duration
            moving.slot_ordinal = ordinal
            return moving

        appointment = self._commit_with_seat(
            tenant.id,
            appointment.doctor_id,
            new_date,
            new_start_time,
            move,
            exclude_appointment_id=appointment_id,
        )
        logger.info(
            f"🔁 Rescheduled appointment {appointment.id} from {old_date} {old_time} "
            f"to {new_date} {new_start_time}"
        )
        notify_safely(self.notifier.notify_rescheduled, appointment, old_date, old_time)
        return appointment

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise NotFoundError("Clinic not found", code="clinic_not_found")
        return tenant

    def _validate_slot(
        self,
        tenant: Tenant,
        schedule: Optional[DoctorSchedule],
        day: date,
        start_time: str,
        now: Optional[datetime],
        public: bool = False,
    ) -> None:
        """Reject a booking target with the specific reason the caller can act on"""
        if schedule is None:
            raise NotFoundError("No schedule configured for this doctor", code="schedule_not_found")

        if not schedule.is_accepting_appointments:
            raise DoctorUnavailableError(REASON_MESSAGES["not_accepting"], code="not_accepting")

        if public and not schedule.accepts_online_booking:
            raise DoctorUnavailableError(
                REASON_MESSAGES["online_booking_disabled"], code="online_booking_disabled"
            )

        now_local = local_now(tenant, now)
        today = now_local.date()

        reason = unavailability_reason(schedule, day, today)
        if reason:
            message = REASON_MESSAGES[reason]
            if reason == "beyond_advance_window":
                message = f"Cannot book more than {schedule.advance_booking_days} days in advance"
            raise DoctorUnavailableError(message, code=reason)

        if start_time not in candidate_slots(schedule, day):
            raise SchedulingValidationError(
                f"{start_time} is not a bookable slot for this doctor on {day}",
                code="slot_not_offered",
            )

        # Public bookers get the same lead time the slot listing applied
        lead = self.lead_minutes if public else 0
        if day == today and not meets_lead_time(start_time, now_local, lead):
            raise SchedulingValidationError(
                f"The {start_time} slot has already started or is too soon to book",
                code="slot_in_past",
            )

    def _commit_with_seat(
        self,
        tenant_id: int,
        doctor_id: int,
        day: date,
        start_time: str,
        apply: Callable[[int], Appointment],
        exclude_appointment_id: Optional[int] = None,
    ) -> Appointment:
        """
        Count, reject-if-full and write as one unit for the slot key.

        ``apply`` receives a free seat ordinal and stages the insert/update. The
        keyed lock serializes this process; the slot-ordinal unique constraint
        makes a writer in another process fail with IntegrityError, in which
        case the whole unit is retried against fresh state.
        """
        key = ("slot", tenant_id, doctor_id, day.isoformat(), start_time)

        with slot_locks.hold(key, timeout=self.lock_timeout):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    schedule = self.repo.get_schedule(self.db, tenant_id, doctor_id, for_update=True)
                    if schedule is None:
                        self.db.rollback()
                        raise NotFoundError(
                            "No schedule configured for this doctor", code="schedule_not_found"
                        )
                    capacity = schedule.max_patients_per_slot
                    taken = self.appointments.taken_slot_ordinals(
                        self.db, tenant_id, doctor_id, day, start_time, exclude_appointment_id
                    )

                    if len(taken) >= capacity:
                        self.db.rollback()
                        logger.warning(
                            f"🚫 Slot full: doctor {doctor_id} {day} {start_time} "
                            f"({len(taken)}/{capacity})"
                        )
                        raise SlotFullError("This time slot is no longer available")

                    ordinal = next(i for i in range(capacity) if i not in taken)
                    appointment = apply(ordinal)
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    logger.warning(
                        f"⚠️ Seat race on doctor {doctor_id} {day} {start_time} "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    continue
                except OperationalError as e:
                    self.db.rollback()
                    logger.error(f"❌ Store error while booking {key}: {e}")
                    raise TransientStoreError(
                        "The appointment store is unavailable, please retry"
                    ) from e
                except Exception:
                    self.db.rollback()
                    raise

                self.db.refresh(appointment)
                return appointment

        raise TransientConflictError(
            "The slot is being booked concurrently, please try again"
        )

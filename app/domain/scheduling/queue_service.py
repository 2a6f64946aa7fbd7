"""Token queue service - daily check-in tokens, queue state and wait estimates"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ...config import AVERAGE_CONSULTATION_MINUTES, BOOKING_MAX_ATTEMPTS, SLOT_LOCK_TIMEOUT_SECONDS
from ...models import Tenant
from ...models_appointment import TERMINAL_STATUSES, Appointment
from ...services.notification_service import AppointmentNotifier, notify_safely
from .availability_service import local_now
from .exceptions import (
    NotFoundError,
    SchedulingValidationError,
    TransientConflictError,
    TransientStoreError,
)
from .locks import token_locks
from .repository import AppointmentRepository, ScheduleRepository
from .schemas import QueueEntry, WalkInCreate
from .slot_generator import slot_end_time

logger = logging.getLogger(__name__)

# Allowed status moves; anything else is rejected
TRANSITIONS = {
    "scheduled": ("checked-in", "cancelled", "no-show"),
    "checked-in": ("in-progress", "cancelled", "no-show"),
    "in-progress": ("completed",),
    **{status: () for status in TERMINAL_STATUSES},
}


def format_token(token_number: int) -> str:
    return f"T-{token_number:03d}"


def utc_naive(now: Optional[datetime] = None) -> datetime:
    """Timestamp columns are naive UTC"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


class QueueService:
    """Check-in, walk-ins, status transitions and the per-day token queue"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[AppointmentNotifier] = None,
        average_consultation_minutes: int = AVERAGE_CONSULTATION_MINUTES,
        max_attempts: int = BOOKING_MAX_ATTEMPTS,
        lock_timeout: float = SLOT_LOCK_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.repo = ScheduleRepository()
        self.appointments = AppointmentRepository()
        self.notifier = notifier or AppointmentNotifier()
        self.average_consultation_minutes = average_consultation_minutes
        self.max_attempts = max_attempts
        self.lock_timeout = lock_timeout

    def _get_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise NotFoundError("Clinic not found", code="clinic_not_found")
        return tenant

    def resolve_day(
        self, tenant_id: int, day: Optional[date] = None, now: Optional[datetime] = None
    ) -> date:
        """The requested day, or today at the clinic"""
        tenant = self._get_tenant(tenant_id)
        return day or local_now(tenant, now).date()

    def _get_appointment(
        self, tenant_id: int, appointment_id: int, for_update: bool = False
    ) -> Appointment:
        appointment = self.appointments.get_appointment(
            self.db, tenant_id, appointment_id, for_update=for_update
        )
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    # ------------------------------------------------------------------
    # Check-in and walk-ins
    # ------------------------------------------------------------------

    def check_in(
        self, tenant_id: int, appointment_id: int, now: Optional[datetime] = None
    ) -> Appointment:
        """Move a scheduled appointment for today into the queue with the next token"""
        tenant = self._get_tenant(tenant_id)
        appointment = self._get_appointment(tenant.id, appointment_id)

        # Repeated check-in returns the token already held
        if appointment.status == "checked-in" and appointment.token_number is not None:
            return appointment

        if appointment.status != "scheduled":
            raise SchedulingValidationError(
                f"Cannot check in an appointment that is {appointment.status}",
                code="invalid_transition",
            )

        today = local_now(tenant, now).date()
        if appointment.appointment_date != today:
            raise SchedulingValidationError(
                f"Only today's appointments can be checked in (appointment is on "
                f"{appointment.appointment_date})",
                code="invalid_date",
            )

        assigned = {}

        def assign(token_number: int) -> Appointment:
            assigned.clear()
            current = self.appointments.get_appointment(
                self.db, tenant.id, appointment_id, for_update=True
            )
            if current is None:
                raise NotFoundError("Appointment not found")
            # Checked in by another request since the first read
            if current.status == "checked-in" and current.token_number is not None:
                return current
            if current.status != "scheduled":
                raise SchedulingValidationError(
                    f"Cannot check in an appointment that is {current.status}",
                    code="invalid_transition",
                )
            self._stamp_token(current, token_number, today, now)
            assigned["token"] = token_number
            return current

        appointment = self._commit_with_token(tenant.id, today, assign)
        if assigned.get("token") != appointment.token_number:
            logger.info(
                f"🎫 Appointment {appointment.id} already checked in as "
                f"{appointment.token_display_number}"
            )
            return appointment
        logger.info(
            f"🎫 Checked in appointment {appointment.id} as {appointment.token_display_number} "
            f"(wait ~{appointment.estimated_wait_minutes} min)"
        )
        notify_safely(self.notifier.notify_checked_in, appointment)
        return appointment

    def create_walk_in(
        self, tenant_id: int, data: WalkInCreate, now: Optional[datetime] = None
    ) -> Appointment:
        """Create a same-day appointment already checked in, bypassing slot capacity"""
        tenant = self._get_tenant(tenant_id)

        patient = self.repo.get_patient(self.db, tenant.id, data.patientId)
        if not patient:
            raise NotFoundError("Patient not found")

        doctor = self.repo.get_doctor(self.db, tenant.id, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")

        schedule = self.repo.get_schedule(self.db, tenant.id, doctor.id)
        duration = schedule.slot_duration if schedule else 30

        clinic_now = local_now(tenant, now)
        today = clinic_now.date()
        start_time = clinic_now.strftime("%H:%M")

        def build(token_number: int) -> Appointment:
            appointment = Appointment(
                tenant_id=tenant.id,
                doctor_id=doctor.id,
                patient_id=patient.id,
                appointment_date=today,
                start_time=start_time,
                end_time=slot_end_time(start_time, duration),
                duration=duration,
                slot_ordinal=None,
                type=data.type,
                priority=data.priority,
                reason=data.reason or "Walk-in",
                notes="Walk-in patient",
            )
            self.db.add(appointment)
            self._stamp_token(appointment, token_number, today, now)
            return appointment

        appointment = self._commit_with_token(tenant.id, today, build)
        logger.info(
            f"🚶 Walk-in {appointment.id} for patient {patient.id} with doctor {doctor.id} "
            f"as {appointment.token_display_number}"
        )
        notify_safely(self.notifier.notify_checked_in, appointment)
        return appointment

    def _stamp_token(
        self, appointment: Appointment, token_number: int, day: date, now: Optional[datetime]
    ) -> None:
        ahead = self.appointments.count_waiting_ahead(self.db, appointment.tenant_id, day, token_number)
        appointment.status = "checked-in"
        appointment.token_number = token_number
        appointment.token_display_number = format_token(token_number)
        appointment.estimated_wait_minutes = ahead * self.average_consultation_minutes
        appointment.checked_in_at = utc_naive(now)

    def _commit_with_token(
        self, tenant_id: int, day: date, apply: Callable[[int], Appointment]
    ) -> Appointment:
        """
        Read the day's highest token and write max + 1 as one unit per
        (tenant, day). The daily-token unique constraint rejects a racing
        writer in another process; that writer retries with a fresh max.
        """
        key = ("token", tenant_id, day.isoformat())

        with token_locks.hold(key, timeout=self.lock_timeout):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    token_number = self.appointments.max_token_number(self.db, tenant_id, day) + 1
                    appointment = apply(token_number)
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    logger.warning(
                        f"⚠️ Token race for tenant {tenant_id} on {day} "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    continue
                except OperationalError as e:
                    self.db.rollback()
                    logger.error(f"❌ Store error while assigning token {key}: {e}")
                    raise TransientStoreError(
                        "The appointment store is unavailable, please retry"
                    ) from e
                except Exception:
                    self.db.rollback()
                    raise

                self.db.refresh(appointment)
                return appointment

        raise TransientConflictError("Check-in is busy, please try again")

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def update_status(
        self,
        tenant_id: int,
        appointment_id: int,
        status: str,
        cancellation_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Apply one workflow step. Moving into checked-in goes through ``check_in``."""
        if status == "checked-in":
            return self.check_in(tenant_id, appointment_id, now)

        tenant = self._get_tenant(tenant_id)
        appointment = self._get_appointment(tenant.id, appointment_id, for_update=True)
        previous = appointment.status

        if status not in TRANSITIONS.get(previous, ()):
            raise SchedulingValidationError(
                f"Cannot change status from {previous} to {status}",
                code="invalid_transition",
            )

        stamp = utc_naive(now)
        appointment.status = status

        if status == "in-progress":
            appointment.called_at = stamp
            appointment.serving_started_at = stamp
            appointment.estimated_wait_minutes = 0
        elif status == "completed":
            appointment.completed_at = stamp
        elif status == "cancelled":
            appointment.cancelled_at = stamp
            appointment.cancellation_reason = cancellation_reason or "Cancelled by clinic"
            appointment.slot_ordinal = None
        elif status == "no-show":
            appointment.slot_ordinal = None

        try:
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.error(f"❌ Store error while updating appointment {appointment_id}: {e}")
            raise TransientStoreError("The appointment store is unavailable, please retry") from e
        self.db.refresh(appointment)

        logger.info(f"🔄 Appointment {appointment.id}: {previous} → {status}")

        if status == "cancelled":
            notify_safely(self.notifier.notify_cancelled, appointment, appointment.cancellation_reason)

        if previous == "checked-in" and appointment.token_number is not None:
            try:
                self.refresh_wait_times(tenant.id, appointment.appointment_date)
            except Exception as e:
                self.db.rollback()
                logger.warning(f"⚠️ Wait time refresh after status change failed: {e}")

        return appointment

    # ------------------------------------------------------------------
    # Queue reads
    # ------------------------------------------------------------------

    def _entry(self, appointment: Appointment, wait_minutes: Optional[int]) -> QueueEntry:
        return QueueEntry(
            appointmentId=appointment.id,
            tokenNumber=appointment.token_number,
            tokenDisplayNumber=appointment.token_display_number,
            status=appointment.status,
            patientName=appointment.patient.full_name if appointment.patient else None,
            doctorId=appointment.doctor_id,
            doctorName=appointment.doctor.name if appointment.doctor else None,
            startTime=appointment.start_time,
            estimatedWaitMinutes=wait_minutes,
        )

    def get_queue_status(
        self,
        tenant_id: int,
        day: Optional[date] = None,
        doctor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Current queue for a day. Wait estimates are computed from the live
        tenant-wide queue on every call; stored estimates are not trusted.
        """
        tenant = self._get_tenant(tenant_id)
        day = day or local_now(tenant, now).date()

        # Position counts every waiting token that day, not only this doctor's
        position = {
            appt.id: index
            for index, appt in enumerate(self.appointments.get_waiting_queue(self.db, tenant.id, day))
        }
        waiting = self.appointments.get_waiting_queue(self.db, tenant.id, day, doctor_id)
        current = self.appointments.get_current_serving(self.db, tenant.id, day, doctor_id)

        waiting_entries = [
            self._entry(appt, position[appt.id] * self.average_consultation_minutes)
            for appt in waiting
        ]

        return {
            "date": day,
            "doctorId": doctor_id,
            "currentServing": self._entry(current, 0) if current else None,
            "nextToken": waiting_entries[0] if waiting_entries else None,
            "waitingQueue": waiting_entries,
            "waitingCount": len(waiting_entries),
            "completedCount": self.appointments.count_tokens(
                self.db, tenant.id, day, doctor_id, status="completed"
            ),
            "totalCheckedIn": self.appointments.count_tokens(self.db, tenant.id, day, doctor_id),
        }

    def refresh_wait_times(self, tenant_id: int, day: date) -> int:
        """Persist position x average consultation for every waiting token; returns the count"""
        waiting = self.appointments.get_waiting_queue(self.db, tenant_id, day)
        for index, appointment in enumerate(waiting):
            appointment.estimated_wait_minutes = index * self.average_consultation_minutes
        self.db.commit()
        logger.info(f"⏱️ Refreshed wait times for {len(waiting)} waiting patients (tenant {tenant_id}, {day})")
        return len(waiting)

    def lookup_by_token(self, tenant_id: int, day: date, token_display_number: str) -> dict:
        appointment = self.appointments.find_by_token(self.db, tenant_id, day, token_display_number)
        if not appointment:
            raise NotFoundError(f"No appointment found with token {token_display_number.strip().upper()}")

        queue_position = None
        wait_minutes = appointment.estimated_wait_minutes
        if appointment.status == "checked-in":
            ahead = self.appointments.count_waiting_ahead(
                self.db, tenant_id, day, appointment.token_number
            )
            queue_position = ahead + 1
            wait_minutes = ahead * self.average_consultation_minutes

        current = self.appointments.get_current_serving(self.db, tenant_id, day, appointment.doctor_id)

        return {
            "appointmentId": appointment.id,
            "tokenNumber": appointment.token_number,
            "tokenDisplayNumber": appointment.token_display_number,
            "status": appointment.status,
            "appointmentDate": appointment.appointment_date,
            "startTime": appointment.start_time,
            "patientName": appointment.patient.full_name if appointment.patient else None,
            "doctorName": appointment.doctor.name if appointment.doctor else None,
            "estimatedWaitMinutes": wait_minutes,
            "checkedInAt": appointment.checked_in_at,
            "queuePosition": queue_position,
            "currentServingToken": current.token_display_number if current else None,
        }

    def public_token_lookup(
        self, slug: str, token_display_number: str, now: Optional[datetime] = None
    ) -> dict:
        """Token lookup for the clinic's public page, always against today"""
        tenant = self.repo.get_tenant_by_slug(self.db, slug)
        if not tenant:
            raise NotFoundError(
                "Clinic not found or public booking is disabled", code="clinic_not_found"
            )
        return self.lookup_by_token(tenant.id, local_now(tenant, now).date(), token_display_number)

"""Scheduling repository - Database operations for schedules, appointments and queues"""

from datetime import date
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ...models import Doctor, Patient, Tenant
from ...models_appointment import INACTIVE_STATUSES, Appointment, DoctorSchedule


class ScheduleRepository:
    """Repository for tenants, doctors, patients and doctor schedules"""

    @staticmethod
    def get_tenant(db: Session, tenant_id: int) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.id == tenant_id, Tenant.is_active.is_(True)).first()

    @staticmethod
    def get_tenant_by_slug(db: Session, slug: str) -> Optional[Tenant]:
        """Get a tenant whose public booking page is enabled"""
        return (
            db.query(Tenant)
            .filter(
                Tenant.booking_slug == (slug or "").strip().lower(),
                Tenant.public_booking_enabled.is_(True),
                Tenant.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_doctor(db: Session, tenant_id: int, doctor_id: int) -> Optional[Doctor]:
        return (
            db.query(Doctor)
            .filter(
                Doctor.id == doctor_id,
                Doctor.tenant_id == tenant_id,
                Doctor.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_patient(db: Session, tenant_id: int, patient_id: int) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(Patient.id == patient_id, Patient.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def find_patient_by_contact(
        db: Session, tenant_id: int, email: Optional[str], phone: Optional[str]
    ) -> Optional[Patient]:
        conditions = []
        if email:
            conditions.append(Patient.email == email.lower())
        if phone:
            conditions.append(Patient.phone == phone)
        if not conditions:
            return None

        return (
            db.query(Patient)
            .filter(Patient.tenant_id == tenant_id, or_(*conditions))
            .order_by(Patient.id)
            .first()
        )

    @staticmethod
    def create_patient(db: Session, tenant_id: int, **patient_data) -> Patient:
        """Add a patient to the current transaction without committing"""
        patient = Patient(tenant_id=tenant_id, **patient_data)
        db.add(patient)
        db.flush()
        return patient

    @staticmethod
    def get_schedule(
        db: Session, tenant_id: int, doctor_id: int, for_update: bool = False
    ) -> Optional[DoctorSchedule]:
        """
        Get a doctor's schedule. ``for_update`` takes a row lock (SELECT ... FOR
        UPDATE) on databases that support it, serializing bookings per doctor.
        """
        query = db.query(DoctorSchedule).filter(
            DoctorSchedule.tenant_id == tenant_id, DoctorSchedule.doctor_id == doctor_id
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def list_schedules(
        db: Session,
        tenant_id: int,
        doctor_id: Optional[int] = None,
        online_only: bool = False,
    ) -> list[DoctorSchedule]:
        query = (
            db.query(DoctorSchedule)
            .options(joinedload(DoctorSchedule.doctor))
            .filter(DoctorSchedule.tenant_id == tenant_id)
        )

        if doctor_id:
            query = query.filter(DoctorSchedule.doctor_id == doctor_id)

        if online_only:
            query = query.filter(
                DoctorSchedule.accepts_online_booking.is_(True),
                DoctorSchedule.is_accepting_appointments.is_(True),
            )

        return query.order_by(DoctorSchedule.created_at.desc(), DoctorSchedule.id.desc()).all()

    @staticmethod
    def create_schedule(db: Session, tenant_id: int, doctor_id: int, **schedule_data) -> DoctorSchedule:
        schedule = DoctorSchedule(tenant_id=tenant_id, doctor_id=doctor_id, **schedule_data)
        db.add(schedule)
        db.commit()
        db.refresh(schedule)
        return schedule

    @staticmethod
    def update_schedule(db: Session, schedule: DoctorSchedule, **updates) -> DoctorSchedule:
        for key, value in updates.items():
            setattr(schedule, key, value)

        db.commit()
        db.refresh(schedule)
        return schedule

    @staticmethod
    def delete_schedule(db: Session, schedule: DoctorSchedule) -> None:
        db.delete(schedule)
        db.commit()


class AppointmentRepository:
    """Repository for appointment and token queue queries"""

    @staticmethod
    def get_appointment(
        db: Session, tenant_id: int, appointment_id: int, for_update: bool = False
    ) -> Optional[Appointment]:
        """
        ``for_update`` locks the row and reloads it from the store even when the
        session already holds the object, so status checks see committed state.
        """
        query = db.query(Appointment).filter(
            Appointment.id == appointment_id, Appointment.tenant_id == tenant_id
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def delete_appointment(db: Session, appointment: Appointment) -> None:
        db.delete(appointment)
        db.commit()

    @staticmethod
    def list_appointments(
        db: Session,
        tenant_id: int,
        day: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: Optional[str] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Appointment], int]:
        """Filtered, paginated appointments ordered by date then start time"""
        query = db.query(Appointment).filter(Appointment.tenant_id == tenant_id)

        if day:
            query = query.filter(Appointment.appointment_date == day)
        elif start_date and end_date:
            query = query.filter(
                Appointment.appointment_date >= start_date,
                Appointment.appointment_date <= end_date,
            )

        if status and status != "all":
            query = query.filter(Appointment.status == status)

        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)

        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)

        total = query.count()
        items = (
            query.order_by(Appointment.appointment_date, Appointment.start_time, Appointment.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def booked_counts_by_start_time(
        db: Session, tenant_id: int, doctor_id: int, day: date
    ) -> dict[str, int]:
        """Tally of active (not cancelled / no-show) appointments per start time"""
        rows = (
            db.query(Appointment.start_time, func.count(Appointment.id))
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day,
                Appointment.status.notin_(INACTIVE_STATUSES),
            )
            .group_by(Appointment.start_time)
            .all()
        )
        return {start_time: count for start_time, count in rows}

    @staticmethod
    def taken_slot_ordinals(
        db: Session,
        tenant_id: int,
        doctor_id: int,
        day: date,
        start_time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[Optional[int]]:
        """Seat ordinals of active appointments at an exact slot (None for walk-ins)"""
        query = db.query(Appointment.slot_ordinal).filter(
            Appointment.tenant_id == tenant_id,
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.start_time == start_time,
            Appointment.status.notin_(INACTIVE_STATUSES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return [row[0] for row in query.all()]

    @staticmethod
    def max_token_number(db: Session, tenant_id: int, day: date) -> int:
        value = (
            db.query(func.max(Appointment.token_number))
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.appointment_date == day,
                Appointment.token_number.isnot(None),
            )
            .scalar()
        )
        return value or 0

    @staticmethod
    def count_waiting_ahead(db: Session, tenant_id: int, day: date, token_number: int) -> int:
        """Checked-in patients holding a lower token on the same day"""
        return (
            db.query(func.count(Appointment.id))
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.appointment_date == day,
                Appointment.token_number.isnot(None),
                Appointment.token_number < token_number,
                Appointment.status == "checked-in",
            )
            .scalar()
        )

    @staticmethod
    def _token_query(db: Session, tenant_id: int, day: date, doctor_id: Optional[int] = None):
        query = (
            db.query(Appointment)
            .options(joinedload(Appointment.patient), joinedload(Appointment.doctor))
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.appointment_date == day,
                Appointment.token_number.isnot(None),
            )
        )
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        return query

    @staticmethod
    def get_waiting_queue(
        db: Session, tenant_id: int, day: date, doctor_id: Optional[int] = None
    ) -> list[Appointment]:
        return (
            AppointmentRepository._token_query(db, tenant_id, day, doctor_id)
            .filter(Appointment.status == "checked-in")
            .order_by(Appointment.token_number)
            .all()
        )

    @staticmethod
    def get_current_serving(
        db: Session, tenant_id: int, day: date, doctor_id: Optional[int] = None
    ) -> Optional[Appointment]:
        return (
            AppointmentRepository._token_query(db, tenant_id, day, doctor_id)
            .filter(Appointment.status == "in-progress")
            .order_by(Appointment.token_number)
            .first()
        )

    @staticmethod
    def count_tokens(
        db: Session,
        tenant_id: int,
        day: date,
        doctor_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> int:
        query = db.query(func.count(Appointment.id)).filter(
            Appointment.tenant_id == tenant_id,
            Appointment.appointment_date == day,
            Appointment.token_number.isnot(None),
        )
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        return query.scalar()

    @staticmethod
    def find_by_token(
        db: Session, tenant_id: int, day: date, token_display_number: str
    ) -> Optional[Appointment]:
        return (
            AppointmentRepository._token_query(db, tenant_id, day)
            .filter(Appointment.token_display_number == token_display_number.strip().upper())
            .first()
        )

"""
Public booking router - unauthenticated endpoints behind a clinic's booking slug.
Every endpoint is rate limited per client IP.
"""

import logging
from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...rate_limiter import public_booking_rate_limiter
from ...services.notification_service import AppointmentNotifier
from .availability_service import AvailabilityService
from .booking_service import BookingService
from .exceptions import NotFoundError
from .queue_service import QueueService
from .repository import ScheduleRepository
from .schedule_service import schedule_to_public_doctor
from .schemas import (
    AvailableSlotsResponse,
    PublicBookingCreate,
    PublicBookingResponse,
    PublicClinicResponse,
    TokenLookupResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Public Booking"], dependencies=[Depends(public_booking_rate_limiter)])


@router.get("/public-booking/{slug}", response_model=PublicClinicResponse)
async def get_public_clinic(slug: str, db: Session = Depends(get_db)):
    """Clinic details and the doctors taking online bookings"""
    repo = ScheduleRepository()
    tenant = repo.get_tenant_by_slug(db, slug)
    if not tenant:
        raise NotFoundError(
            "Clinic not found or public booking is disabled", code="clinic_not_found"
        )

    schedules = repo.list_schedules(db, tenant.id, online_only=True)
    return PublicClinicResponse(
        name=tenant.name,
        requireEmail=tenant.require_email,
        requirePhoneNumber=tenant.require_phone_number,
        doctors=[
            schedule_to_public_doctor(s) for s in schedules if s.doctor and s.doctor.is_active
        ],
    )


@router.get("/public-booking/{slug}/slots", response_model=AvailableSlotsResponse)
async def get_public_slots(
    slug: str,
    doctorId: int = Query(...),
    date: date = Query(...),
    db: Session = Depends(get_db),
):
    result = AvailabilityService(db).get_public_available_slots(slug, doctorId, date)
    return AvailableSlotsResponse(
        date=result.day,
        doctorId=result.doctor_id,
        slots=result.slots,
        slotDurationMinutes=result.slot_duration,
        reason=result.reason,
        message=result.message,
    )


@router.post("/public-booking", response_model=PublicBookingResponse, status_code=201)
async def create_public_booking(
    data: PublicBookingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Book from the public page; the patient record is matched or created"""
    service = BookingService(db, notifier=AppointmentNotifier(background_tasks))
    appointment, confirmation = service.book_public_appointment(data)
    return PublicBookingResponse(
        appointmentId=appointment.public_id,
        confirmationMessage=confirmation,
        date=appointment.appointment_date,
        time=appointment.start_time,
        endTime=appointment.end_time,
        duration=appointment.duration,
    )


@router.get("/public/{slug}/token/{token_display_number}", response_model=TokenLookupResponse)
async def public_token_lookup(slug: str, token_display_number: str, db: Session = Depends(get_db)):
    """Queue position for a token handed out today"""
    return QueueService(db).public_token_lookup(slug, token_display_number)

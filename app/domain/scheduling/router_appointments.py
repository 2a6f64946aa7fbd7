"""Appointment router - availability, booking, rescheduling and status changes"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.notification_service import AppointmentNotifier
from ...tenancy import TenantContext, get_tenant_context
from .availability_service import AvailabilityService
from .booking_service import BookingService
from .queue_service import QueueService
from .schemas import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusUpdate,
    AppointmentUpdate,
    AvailableSlotsResponse,
    CheckInResponse,
    WalkInCreate,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Appointments"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


def get_booking_service(
    background_tasks: BackgroundTasks, db: Session = Depends(get_db)
) -> BookingService:
    """Dependency injection for BookingService, with notifications sent after the response"""
    return BookingService(db, notifier=AppointmentNotifier(background_tasks))


def get_queue_service(
    background_tasks: BackgroundTasks, db: Session = Depends(get_db)
) -> QueueService:
    """Dependency injection for QueueService"""
    return QueueService(db, notifier=AppointmentNotifier(background_tasks))


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.get("/availability/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    doctorId: int = Query(...),
    date: date = Query(...),
    ctx: TenantContext = Depends(get_tenant_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Open slots for a doctor on a date. "No availability" is an empty list with a reason."""
    result = service.get_available_slots(ctx.tenant_id, doctorId, date)
    return AvailableSlotsResponse(
        date=result.day,
        doctorId=result.doctor_id,
        slots=result.slots,
        slotDurationMinutes=result.slot_duration,
        reason=result.reason,
        message=result.message,
    )


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.get("/appointments", response_model=AppointmentListResponse)
async def list_appointments(
    date: Optional[date] = Query(None),
    startDate: Optional[date] = Query(None),
    endDate: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    doctorId: Optional[int] = Query(None),
    patientId: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    result = service.list_appointments(
        ctx.tenant_id,
        page=page,
        limit=limit,
        day=date,
        start_date=startDate,
        end_date=endDate,
        status=status,
        doctor_id=doctorId,
        patient_id=patientId,
    )
    result["data"] = [AppointmentResponse.from_model(a) for a in result["data"]]
    return result


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    return AppointmentResponse.from_model(service.get_appointment(ctx.tenant_id, appointment_id))


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    data: AppointmentCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    """Book a slot; 409 with a specific error code when the slot or doctor is unavailable"""
    appointment = service.book_appointment(ctx.tenant_id, data)
    return AppointmentResponse.from_model(appointment)


@router.patch("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    """Edit type, reason, notes or priority. Slot and status have their own routes."""
    return AppointmentResponse.from_model(
        service.update_appointment(ctx.tenant_id, appointment_id, data)
    )


@router.delete("/appointments/{appointment_id}")
async def delete_appointment(
    appointment_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    service.delete_appointment(ctx.tenant_id, appointment_id)
    return {"message": "Appointment deleted successfully"}


@router.put("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BookingService = Depends(get_booking_service),
):
    appointment = service.reschedule_appointment(
        ctx.tenant_id, appointment_id, data.appointmentDate, data.startTime
    )
    return AppointmentResponse.from_model(appointment)


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    appointment = service.update_status(
        ctx.tenant_id, appointment_id, data.status, data.cancellationReason
    )
    return AppointmentResponse.from_model(appointment)


@router.post("/appointments/{appointment_id}/check-in", response_model=CheckInResponse)
async def check_in(
    appointment_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    """Check a patient in and hand out the next token of the day"""
    appointment = service.check_in(ctx.tenant_id, appointment_id)
    return CheckInResponse(
        appointmentId=appointment.id,
        tokenNumber=appointment.token_number,
        tokenDisplayNumber=appointment.token_display_number,
        estimatedWaitMinutes=appointment.estimated_wait_minutes or 0,
    )


@router.post("/appointments/walk-in", response_model=AppointmentResponse, status_code=201)
async def create_walk_in(
    data: WalkInCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    return AppointmentResponse.from_model(service.create_walk_in(ctx.tenant_id, data))

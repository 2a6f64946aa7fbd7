"""Doctor schedule router - FastAPI endpoints for weekly templates and leave"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...database import get_db
from ...tenancy import TenantContext, get_tenant_context
from .schemas import DoctorScheduleCreate, DoctorScheduleResponse, DoctorScheduleUpdate, LeaveDate
from .schedule_service import ScheduleService, schedule_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctor-schedules", tags=["Doctor Schedules"])


def get_schedule_service(db: Session = Depends(get_db)) -> ScheduleService:
    """Dependency injection for ScheduleService"""
    return ScheduleService(db)


@router.get("", response_model=list[DoctorScheduleResponse])
async def list_schedules(
    doctorId: Optional[int] = Query(None),
    onlineOnly: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    """List the clinic's doctor schedules, optionally only those open to online booking"""
    schedules = service.list_schedules(ctx.tenant_id, doctorId, onlineOnly)
    return [schedule_to_response(s) for s in schedules]


@router.get("/doctor/{doctor_id}", response_model=DoctorScheduleResponse)
async def get_schedule(
    doctor_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    return schedule_to_response(service.get_schedule(ctx.tenant_id, doctor_id))


@router.post("", response_model=DoctorScheduleResponse)
async def upsert_schedule(
    data: DoctorScheduleCreate,
    response: Response,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    """Create the doctor's schedule, or replace the existing one"""
    schedule, created = service.upsert_schedule(ctx.tenant_id, data)
    response.status_code = 201 if created else 200
    return schedule_to_response(schedule)


@router.patch("/doctor/{doctor_id}", response_model=DoctorScheduleResponse)
async def update_schedule(
    doctor_id: int,
    data: DoctorScheduleUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    return schedule_to_response(service.update_schedule(ctx.tenant_id, doctor_id, data))


@router.delete("/doctor/{doctor_id}")
async def delete_schedule(
    doctor_id: int,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    service.delete_schedule(ctx.tenant_id, doctor_id)
    return {"message": "Schedule deleted successfully"}


# ============================================================================
# LEAVE DATES
# ============================================================================


@router.post("/doctor/{doctor_id}/leave", response_model=DoctorScheduleResponse)
async def add_leave_date(
    doctor_id: int,
    data: LeaveDate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedule = service.add_leave_date(ctx.tenant_id, doctor_id, data.date, data.reason)
    return schedule_to_response(schedule)


@router.delete("/doctor/{doctor_id}/leave/{leave_date}", response_model=DoctorScheduleResponse)
async def remove_leave_date(
    doctor_id: int,
    leave_date: date,
    ctx: TenantContext = Depends(get_tenant_context),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedule = service.remove_leave_date(ctx.tenant_id, doctor_id, leave_date)
    return schedule_to_response(schedule)

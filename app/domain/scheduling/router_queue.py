"""Token queue router - live queue status, wait time refresh and token lookup"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...tenancy import TenantContext, get_tenant_context
from .queue_service import QueueService
from .schemas import QueueStatusResponse, TokenLookupResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Token Queue"])


def get_queue_service(db: Session = Depends(get_db)) -> QueueService:
    """Dependency injection for QueueService"""
    return QueueService(db)


@router.get("/status", response_model=QueueStatusResponse)
async def get_queue_status(
    date: Optional[date] = Query(None),
    doctorId: Optional[int] = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    """Who is being served and who is waiting; defaults to today at the clinic"""
    return service.get_queue_status(ctx.tenant_id, date, doctorId)


@router.post("/refresh-wait-times")
async def refresh_wait_times(
    date: Optional[date] = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    day = service.resolve_day(ctx.tenant_id, date)
    updated = service.refresh_wait_times(ctx.tenant_id, day)
    return {"message": "Wait times refreshed", "updated": updated, "date": day}


@router.get("/token/{token_display_number}", response_model=TokenLookupResponse)
async def lookup_token(
    token_display_number: str,
    date: Optional[date] = Query(None),
    ctx: TenantContext = Depends(get_tenant_context),
    service: QueueService = Depends(get_queue_service),
):
    day = service.resolve_day(ctx.tenant_id, date)
    return service.lookup_by_token(ctx.tenant_id, day, token_display_number)

"""
Tenant context for authenticated endpoints.

Authentication happens at the gateway in front of this service, which forwards
the resolved clinic and staff user as trusted headers.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    user_id: Optional[str] = None


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> TenantContext:
    """Dependency resolving the caller's clinic from the gateway headers"""
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Not authenticated. Missing tenant context.")

    try:
        tenant_id = int(x_tenant_id)
    except ValueError:
        logger.warning(f"Rejected malformed X-Tenant-ID header: {x_tenant_id!r}")
        raise HTTPException(status_code=400, detail="Invalid tenant id")

    return TenantContext(tenant_id=tenant_id, user_id=x_user_id)

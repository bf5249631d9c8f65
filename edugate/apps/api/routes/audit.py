from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from edugate.apps.api.deps import get_audit_trail, get_tenant_context, require_permission
from edugate.apps.api.response import list_response
from edugate.domain.enums import Permission
from edugate.services.audit import AuditFilters, AuditTrail
from edugate.services.tenancy import TenantContext


router = APIRouter(tags=["audit"])


class AuditEntryResponse(BaseModel):
    id: int
    tenant_id: str | None = None
    user_id: str | None
    user_role: str | None
    action: str
    entity_type: str
    entity_id: str | None
    target: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    created_at: str


def _to_response(row, *, shared: bool) -> dict[str, Any]:
    # Serialize audit datetimes to ISO 8601 for API clients.
    response = AuditEntryResponse(
        id=row.id,
        tenant_id=row.tenant_id if shared else None,
        user_id=row.user_id,
        user_role=row.user_role,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        target=row.target,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at.isoformat(),
    )
    return response.model_dump()


@router.get(
    "/audit",
    dependencies=[Depends(require_permission(Permission.AUDIT_VIEW))],
)
async def list_tenant_audit(
    request: Request,
    entity_type: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    limit: int | None = Query(default=None, ge=1),
    tenant: TenantContext = Depends(get_tenant_context),
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    # Always the resolved school's own log; there is no cross-tenant read here.
    rows = await audit.list_tenant_events(
        tenant.schema_name,
        AuditFilters(
            entity_type=entity_type,
            user_id=user_id,
            action=action,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
        ),
    )
    return list_response(request=request, items=[_to_response(row, shared=False) for row in rows])


@router.get(
    "/platform/audit",
    dependencies=[
        Depends(require_permission(Permission.AUDIT_VIEW_PLATFORM, tenant_optional=True))
    ],
)
async def list_platform_audit(
    request: Request,
    tenant_id: str | None = None,
    entity_type: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    limit: int | None = Query(default=None, ge=1),
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    rows = await audit.list_shared_events(
        AuditFilters(
            entity_type=entity_type,
            user_id=user_id,
            action=action,
            tenant_id=tenant_id,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
        )
    )
    return list_response(request=request, items=[_to_response(row, shared=True) for row in rows])

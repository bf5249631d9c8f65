from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from edugate.apps.api.deps import get_current_user, get_optional_tenant_context
from edugate.apps.api.response import success_response
from edugate.services.auth import AuthenticatedUser
from edugate.services.tenancy import TenantContext


router = APIRouter(prefix="/me", tags=["me"])


class PermissionsResponse(BaseModel):
    user_id: str
    role: str
    additional_roles: list[str]
    tenant_id: str | None
    permissions: list[str]


@router.get("/permissions")
async def my_permissions(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    tenant: TenantContext | None = Depends(get_optional_tenant_context),
) -> dict:
    # Same evaluation the route guards use, so UIs can hide what would be refused.
    payload = PermissionsResponse(
        user_id=user.id,
        role=user.role,
        additional_roles=list(user.additional_roles),
        tenant_id=tenant.tenant_id if tenant else None,
        permissions=user.permissions(),
    )
    return success_response(request=request, data=payload.model_dump())

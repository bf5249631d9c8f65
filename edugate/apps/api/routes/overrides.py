from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from edugate.apps.api.deps import get_override_service, require_permission
from edugate.apps.api.response import list_response, success_response
from edugate.domain.enums import OverrideType, Permission
from edugate.domain.models import ManualOverride
from edugate.services.auth import AuthenticatedUser
from edugate.services.overrides import OverrideFilters, OverrideInput, OverrideService


router = APIRouter(prefix="/platform/overrides", tags=["overrides"])


class OverrideCreateRequest(BaseModel):
    override_type: OverrideType
    target_id: str = Field(min_length=1, max_length=255)
    action: str = Field(min_length=1, max_length=255)
    reason: str = Field(min_length=1)
    expires_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OverrideRevokeRequest(BaseModel):
    reason: str | None = None


class OverrideResponse(BaseModel):
    id: str
    override_type: str
    target_id: str
    action: str
    reason: str
    created_by: str
    expires_at: str | None
    metadata: dict[str, Any] | None
    is_active: bool
    created_at: str
    revoked_at: str | None
    revoked_by: str | None
    revoke_reason: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _to_response(override: ManualOverride) -> dict[str, Any]:
    return OverrideResponse(
        id=override.id,
        override_type=override.override_type,
        target_id=override.target_id,
        action=override.action,
        reason=override.reason,
        created_by=override.created_by,
        expires_at=_iso(override.expires_at),
        metadata=override.metadata_json,
        is_active=override.is_active,
        created_at=override.created_at.isoformat(),
        revoked_at=_iso(override.revoked_at),
        revoked_by=override.revoked_by,
        revoke_reason=override.revoke_reason,
    ).model_dump()


@router.post("", status_code=201)
async def create_override(
    payload: OverrideCreateRequest,
    request: Request,
    user: AuthenticatedUser = Depends(
        require_permission(Permission.OVERRIDES_CREATE, tenant_optional=True)
    ),
    service: OverrideService = Depends(get_override_service),
) -> dict:
    override = await service.create(
        OverrideInput(
            override_type=payload.override_type,
            target_id=payload.target_id,
            action=payload.action,
            reason=payload.reason,
            expires_at=payload.expires_at,
            metadata=payload.metadata,
        ),
        actor_id=user.id,
    )
    return success_response(request=request, data=_to_response(override))


@router.get("")
async def list_overrides(
    request: Request,
    override_type: OverrideType | None = None,
    target_id: str | None = None,
    is_active: bool | None = None,
    created_by: str | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    _user: AuthenticatedUser = Depends(
        require_permission(Permission.OVERRIDES_VIEW, tenant_optional=True)
    ),
    service: OverrideService = Depends(get_override_service),
) -> dict:
    overrides = await service.list_overrides(
        OverrideFilters(
            override_type=override_type,
            target_id=target_id,
            is_active=is_active,
            created_by=created_by,
            limit=limit,
        )
    )
    return list_response(request=request, items=[_to_response(item) for item in overrides])


@router.get("/active")
async def get_active_overrides(
    request: Request,
    override_type: OverrideType,
    target_id: str = Query(min_length=1),
    _user: AuthenticatedUser = Depends(
        require_permission(Permission.OVERRIDES_VIEW, tenant_optional=True)
    ),
    service: OverrideService = Depends(get_override_service),
) -> dict:
    # Active means flagged active and not past expiry, whether or not the sweep has run.
    overrides = await service.get_active_for(override_type, target_id)
    return list_response(request=request, items=[_to_response(item) for item in overrides])


@router.get("/{override_id}")
async def get_override(
    override_id: str,
    request: Request,
    _user: AuthenticatedUser = Depends(
        require_permission(Permission.OVERRIDES_VIEW, tenant_optional=True)
    ),
    service: OverrideService = Depends(get_override_service),
) -> dict:
    override = await service.get(override_id)
    return success_response(request=request, data=_to_response(override))


@router.post("/{override_id}/revoke")
async def revoke_override(
    override_id: str,
    request: Request,
    payload: OverrideRevokeRequest | None = None,
    user: AuthenticatedUser = Depends(
        require_permission(Permission.OVERRIDES_REVOKE, tenant_optional=True)
    ),
    service: OverrideService = Depends(get_override_service),
) -> dict:
    override = await service.revoke(
        override_id,
        reason=payload.reason if payload else None,
        actor_id=user.id,
    )
    return success_response(request=request, data=_to_response(override))

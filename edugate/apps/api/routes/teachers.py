from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from edugate.apps.api.deps import get_current_user, get_tenant_context
from edugate.apps.api.response import success_response
from edugate.core.errors import AssignmentForbidden
from edugate.domain.enums import Role
from edugate.services.assignments import AssignmentVerifier
from edugate.services.auth import AuthenticatedUser
from edugate.services.tenancy import TenantContext


router = APIRouter(prefix="/teachers", tags=["teachers"])


class AssignmentsResponse(BaseModel):
    teacher_id: str
    class_ids: list[str]


@router.get("/me/assignments")
async def my_assignments(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant_context),
) -> dict:
    # Lets teacher UIs narrow class pickers to what the assignment guard will allow.
    if user.role != Role.TEACHER:
        raise AssignmentForbidden("Only teachers have class assignments")
    verifier = AssignmentVerifier(tenant.session)
    teacher = await verifier.resolve_teacher(user, getattr(request.state, "teacher", None))
    if teacher is None:
        raise AssignmentForbidden("Teacher profile not found")
    request.state.teacher = teacher
    payload = AssignmentsResponse(
        teacher_id=teacher.id,
        class_ids=await verifier.assigned_class_ids(teacher.id),
    )
    return success_response(request=request, data=payload.model_dump())

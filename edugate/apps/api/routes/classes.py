from __future__ import annotations

from datetime import date
import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from edugate.apps.api.deps import (
    get_current_user,
    get_tenant_context,
    require_permission,
    require_teacher_assignment,
)
from edugate.apps.api.response import success_response
from edugate.domain.enums import Permission
from edugate.services.assignments import AssignmentDecision
from edugate.services.auth import AuthenticatedUser
from edugate.services.tenancy import TenantContext


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/classes", tags=["classes"])


class AttendanceRecord(BaseModel):
    student_id: str = Field(min_length=1)
    status: Literal["present", "absent", "late", "excused"]


class AttendanceRequest(BaseModel):
    session_date: date | None = None
    records: list[AttendanceRecord] = Field(default_factory=list)


class GradeRecord(BaseModel):
    student_id: str = Field(min_length=1)
    score: float = Field(ge=0)


class GradesRequest(BaseModel):
    exam_id: str | None = None
    grades: list[GradeRecord] = Field(default_factory=list)


class ClassActionResponse(BaseModel):
    tenant_id: str
    class_id: str
    subject_id: str | None
    accepted: int
    actor_id: str
    assignment_bypassed: bool


@router.post(
    "/{class_id}/attendance",
    dependencies=[
        Depends(
            require_permission(
                Permission.ATTENDANCE_MARK, Permission.ATTENDANCE_MANAGE, mode="any"
            )
        )
    ],
)
async def mark_attendance(
    class_id: str,
    payload: AttendanceRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant_context),
    decision: AssignmentDecision = Depends(require_teacher_assignment()),
) -> dict:
    # Gate only: persistence of attendance rows lives with the attendance service.
    logger.info(
        "attendance_marked tenant_id=%s class_id=%s records=%s actor=%s",
        tenant.tenant_id,
        class_id,
        len(payload.records),
        user.id,
    )
    response = ClassActionResponse(
        tenant_id=tenant.tenant_id,
        class_id=class_id,
        subject_id=decision.target.subject_id,
        accepted=len(payload.records),
        actor_id=user.id,
        assignment_bypassed=decision.bypassed,
    )
    return success_response(request=request, data=response.model_dump())


@router.post(
    "/{class_id}/subjects/{subject_id}/grades",
    dependencies=[
        Depends(require_permission(Permission.GRADES_ENTER, Permission.GRADES_MANAGE, mode="any"))
    ],
)
async def enter_grades(
    class_id: str,
    subject_id: str,
    payload: GradesRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant_context),
    decision: AssignmentDecision = Depends(require_teacher_assignment(require_subject=True)),
) -> dict:
    logger.info(
        "grades_entered tenant_id=%s class_id=%s subject_id=%s grades=%s actor=%s",
        tenant.tenant_id,
        class_id,
        subject_id,
        len(payload.grades),
        user.id,
    )
    response = ClassActionResponse(
        tenant_id=tenant.tenant_id,
        class_id=class_id,
        subject_id=subject_id,
        accepted=len(payload.grades),
        actor_id=user.id,
        assignment_bypassed=decision.bypassed,
    )
    return success_response(request=request, data=response.model_dump())

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import AssignmentBadRequest, AssignmentForbidden
from edugate.domain.enums import Role
from edugate.domain.models import Teacher
from edugate.persistence.repos import assignments as assignments_repo
from edugate.services.auth import AuthenticatedUser


@dataclass(frozen=True)
class AssignmentOptions:
    class_id_param: str = "class_id"
    subject_id_param: str = "subject_id"
    require_subject: bool = False
    allow_admins: bool = True


@dataclass(frozen=True)
class AssignmentTarget:
    class_id: str | None = None
    subject_id: str | None = None


@dataclass(frozen=True)
class AssignmentDecision:
    # Teacher is None when an administrator bypassed the check.
    teacher: Teacher | None
    target: AssignmentTarget
    bypassed: bool = False


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _lookup(source: Mapping[str, Any] | None, name: str) -> str | None:
    if not source:
        return None
    for key in dict.fromkeys((name, _camel(name))):
        value = source.get(key)
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return None


def extract_target(
    *,
    path_params: Mapping[str, Any] | None,
    body: Any,
    query: Mapping[str, Any] | None,
    options: AssignmentOptions,
) -> AssignmentTarget:
    # Path parameters win over body fields, body fields over query parameters.
    body_map = body if isinstance(body, Mapping) else None
    sources = (path_params, body_map, query)

    def _first(name: str) -> str | None:
        for source in sources:
            value = _lookup(source, name)
            if value is not None:
                return value
        return None

    return AssignmentTarget(
        class_id=_first(options.class_id_param),
        subject_id=_first(options.subject_id_param),
    )


class AssignmentVerifier:
    """Resource-level check that a teacher is linked to a class or subject.

    Runs on a tenant-bound session, so assignments and the teacher roster are
    always read from the caller's own school.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_assigned(
        self,
        teacher_id: str,
        class_id: str | None = None,
        subject_id: str | None = None,
    ) -> bool:
        if class_id is None and subject_id is None:
            return False
        return await assignments_repo.has_assignment(
            self._session, teacher_id=teacher_id, class_id=class_id, subject_id=subject_id
        )

    async def resolve_teacher(
        self,
        user: AuthenticatedUser,
        cached: Teacher | None = None,
    ) -> Teacher | None:
        # Prefer a roster row already attached to the request, then the account link, then email.
        if cached is not None:
            return cached
        teacher = await assignments_repo.get_teacher_by_user_id(self._session, user.id)
        if teacher is not None:
            return teacher
        if not user.email:
            return None
        return await assignments_repo.get_teacher_by_email(self._session, user.email)

    async def assigned_class_ids(self, teacher_id: str) -> list[str]:
        return await assignments_repo.list_assigned_class_ids(self._session, teacher_id)

    async def verify(
        self,
        *,
        user: AuthenticatedUser,
        target: AssignmentTarget,
        options: AssignmentOptions | None = None,
        cached_teacher: Teacher | None = None,
    ) -> AssignmentDecision:
        resolved = options or AssignmentOptions()
        if resolved.allow_admins and user.is_administrator:
            return AssignmentDecision(teacher=None, target=target, bypassed=True)
        if user.role != Role.TEACHER:
            raise AssignmentForbidden("Only teachers can perform this action")

        teacher = await self.resolve_teacher(user, cached_teacher)
        if teacher is None:
            raise AssignmentForbidden("Teacher profile not found")

        if target.class_id is None and target.subject_id is None:
            raise AssignmentBadRequest(
                f"{resolved.class_id_param} or {resolved.subject_id_param} is required"
            )
        if resolved.require_subject and target.subject_id is None:
            raise AssignmentBadRequest(f"{resolved.subject_id_param} is required")

        if not await self.is_assigned(teacher.id, target.class_id, target.subject_id):
            raise AssignmentForbidden("Teacher is not assigned to this class or subject")
        return AssignmentDecision(teacher=teacher, target=target)

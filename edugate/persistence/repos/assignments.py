from __future__ import annotations

from sqlalchemy import String, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import Teacher, TeacherAssignment


async def get_teacher_by_user_id(session: AsyncSession, user_id: str) -> Teacher | None:
    result = await session.execute(select(Teacher).where(Teacher.user_id == user_id).limit(1))
    return result.scalar_one_or_none()


async def get_teacher_by_email(session: AsyncSession, email: str) -> Teacher | None:
    # Legacy rosters are keyed by email only; compare case-insensitively.
    result = await session.execute(
        select(Teacher).where(func.lower(Teacher.email) == email.strip().lower()).limit(1)
    )
    return result.scalar_one_or_none()


async def has_assignment(
    session: AsyncSession,
    *,
    teacher_id: str,
    class_id: str | None = None,
    subject_id: str | None = None,
) -> bool:
    stmt = select(TeacherAssignment.id).where(TeacherAssignment.teacher_id == teacher_id)
    if class_id is not None:
        # Class ids arrive as surrogate or natural keys; compare as text.
        stmt = stmt.where(cast(TeacherAssignment.class_id, String) == str(class_id))
    if subject_id is not None:
        stmt = stmt.where(TeacherAssignment.subject_id == str(subject_id))
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def list_assigned_class_ids(session: AsyncSession, teacher_id: str) -> list[str]:
    result = await session.execute(
        select(TeacherAssignment.class_id)
        .where(TeacherAssignment.teacher_id == teacher_id)
        .distinct()
        .order_by(TeacherAssignment.class_id)
    )
    return [str(class_id) for class_id in result.scalars().all()]

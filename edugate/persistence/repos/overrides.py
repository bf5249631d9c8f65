from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import ManualOverride


def _unexpired(now: datetime):
    return or_(ManualOverride.expires_at.is_(None), ManualOverride.expires_at > now)


async def get_override(session: AsyncSession, override_id: str) -> ManualOverride | None:
    result = await session.execute(select(ManualOverride).where(ManualOverride.id == override_id))
    return result.scalar_one_or_none()


async def get_active_for(
    session: AsyncSession,
    *,
    override_type: str,
    target_id: str,
    now: datetime,
) -> list[ManualOverride]:
    # Only rows that are active and not yet past their expiry count.
    result = await session.execute(
        select(ManualOverride)
        .where(
            ManualOverride.override_type == override_type,
            ManualOverride.target_id == target_id,
            ManualOverride.is_active.is_(True),
            _unexpired(now),
        )
        .order_by(ManualOverride.created_at.desc())
    )
    return list(result.scalars().all())


async def list_overrides(
    session: AsyncSession,
    *,
    override_type: str | None = None,
    target_id: str | None = None,
    is_active: bool | None = None,
    created_by: str | None = None,
    limit: int = 200,
) -> list[ManualOverride]:
    stmt = select(ManualOverride)
    if override_type:
        stmt = stmt.where(ManualOverride.override_type == override_type)
    if target_id:
        stmt = stmt.where(ManualOverride.target_id == target_id)
    if is_active is not None:
        stmt = stmt.where(ManualOverride.is_active.is_(is_active))
    if created_by:
        stmt = stmt.where(ManualOverride.created_by == created_by)
    stmt = stmt.order_by(ManualOverride.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def deactivate_expired(
    session: AsyncSession,
    *,
    now: datetime,
    override_type: str | None = None,
    target_id: str | None = None,
) -> int:
    # Flip rows still marked active but past expiry; safe to repeat or run concurrently.
    stmt = update(ManualOverride).where(
        ManualOverride.is_active.is_(True),
        ManualOverride.expires_at.is_not(None),
        ManualOverride.expires_at <= now,
    )
    if override_type is not None:
        stmt = stmt.where(ManualOverride.override_type == override_type)
    if target_id is not None:
        stmt = stmt.where(ManualOverride.target_id == target_id)
    result = await session.execute(
        stmt.values(is_active=False).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def revoke_override(
    session: AsyncSession,
    *,
    override_id: str,
    revoked_by: str | None,
    reason: str,
    now: datetime,
) -> int:
    # Conditional on is_active so concurrent revokes transition the row exactly once.
    result = await session.execute(
        update(ManualOverride)
        .where(ManualOverride.id == override_id, ManualOverride.is_active.is_(True))
        .values(is_active=False, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0

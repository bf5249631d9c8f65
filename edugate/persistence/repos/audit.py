from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import SharedAuditLog, TenantAuditLog


AuditLogModel = type[SharedAuditLog] | type[TenantAuditLog]


async def insert_entry(
    session: AsyncSession,
    model: AuditLogModel,
    *,
    values: dict[str, Any],
) -> None:
    # Append only; audit rows are never updated or deleted.
    session.add(model(**values))
    await session.commit()


async def list_entries(
    session: AsyncSession,
    model: AuditLogModel,
    *,
    entity_type: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    tenant_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = 200,
) -> list[SharedAuditLog] | list[TenantAuditLog]:
    # Newest first; the session decides which log (tenant schema or shared) is read.
    stmt = select(model)
    if entity_type:
        stmt = stmt.where(model.entity_type == entity_type)
    if user_id:
        stmt = stmt.where(model.user_id == user_id)
    if action:
        stmt = stmt.where(model.action == action)
    if tenant_id and model is SharedAuditLog:
        stmt = stmt.where(SharedAuditLog.tenant_id == tenant_id)
    if created_from:
        stmt = stmt.where(model.created_at >= created_from)
    if created_to:
        stmt = stmt.where(model.created_at <= created_to)
    stmt = stmt.order_by(model.created_at.desc(), model.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())

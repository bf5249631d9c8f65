from __future__ import annotations

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.models import Tenant, User, UserRole


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_hint(session: AsyncSession, hint: str) -> Tenant | None:
    # An exact id match wins; the domain label is only consulted when no id matches.
    tenant = await get_tenant(session, hint)
    if tenant is not None:
        return tenant
    result = await session.execute(select(Tenant).where(Tenant.domain == hint))
    return result.scalar_one_or_none()


async def hint_in_use(session: AsyncSession, value: str) -> bool:
    # True when the value already resolves a tenant, as an id or as a domain.
    result = await session.execute(
        select(Tenant.id).where(or_(Tenant.id == value, Tenant.domain == value)).limit(1)
    )
    return result.first() is not None


async def set_tenant_status(session: AsyncSession, tenant_id: str, status: str) -> int:
    # Status is the only tenant field this service mutates.
    result = await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def list_additional_roles(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.execute(
        select(UserRole.role_name).where(UserRole.user_id == user_id).order_by(UserRole.role_name)
    )
    return [str(role) for role in result.scalars().all()]


async def create_tenant(
    session: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    schema_name: str,
    domain: str | None = None,
) -> Tenant:
    tenant = Tenant(id=tenant_id, name=name, schema_name=schema_name, domain=domain)
    session.add(tenant)
    await session.flush()
    return tenant

from __future__ import annotations

import pytest

from edugate.core.errors import TenantConflict
from edugate.domain.models import Tenant
from edugate.services.tenancy import register_tenant
from edugate.tests.utils.db import count_rows, seed_tenant, tenant_audit_rows


@pytest.mark.asyncio
async def test_health_reports_database_and_pool(client) -> None:
    response = await client.get("/v1/health")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert set(data["pool"]) == {"size", "checked_out", "checked_in"}


@pytest.mark.asyncio
async def test_register_tenant_is_idempotent(engine, session_factory) -> None:
    tenant = await register_tenant(
        engine, session_factory, tenant_id="riverside", name="Riverside High"
    )
    assert tenant.schema_name == "tenant_riverside"
    again = await register_tenant(
        engine, session_factory, tenant_id="riverside", name="Riverside High"
    )
    assert again.schema_name == tenant.schema_name
    assert await count_rows(session_factory, Tenant) == 1
    # The provisioned schema is immediately usable for tenant-scoped reads.
    assert await tenant_audit_rows(engine, "tenant_riverside") == []


@pytest.mark.asyncio
async def test_register_tenant_rejects_ambiguous_hints(engine, session_factory) -> None:
    await seed_tenant(
        session_factory, tenant_id="northridge", schema_name="tenant_northridge", domain="nr"
    )
    with pytest.raises(TenantConflict):
        await register_tenant(
            engine, session_factory, tenant_id="lakeside", name="Lakeside", domain="northridge"
        )
    with pytest.raises(TenantConflict):
        await register_tenant(engine, session_factory, tenant_id="nr", name="Shadow")
    assert await count_rows(session_factory, Tenant) == 1

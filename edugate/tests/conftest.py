from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from edugate.apps.api.main import create_app
from edugate.core.config import Settings, get_settings
from edugate.domain.enums import Role
from edugate.domain.models import SharedBase
from edugate.persistence.db import build_session_factory, create_engine_from_settings
from edugate.persistence.tenancy import provision_tenant_schema
from edugate.services.audit import AuditTrail
from edugate.services.overrides import OverrideService
from edugate.tests.utils.auth import TEST_JWT_SECRET
from edugate.tests.utils.db import attach_tenant_databases, seed_teacher, seed_tenant, seed_user


TEST_WEBHOOK_SECRET = "whsec_test_secret"
TENANT_SCHEMAS = ["tenant_northridge", "tenant_riverside"]


@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    # Every test gets its own SQLite file plus one attached database per tenant schema.
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'shared.db'}")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("PAYMENT_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("OVERRIDE_SWEEP_INTERVAL_S", "1")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
async def engine(settings: Settings, tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = create_engine_from_settings(settings)
    attach_tenant_databases(engine, tmp_path, TENANT_SCHEMAS)
    async with engine.begin() as conn:
        await conn.run_sync(SharedBase.metadata.create_all)
    for schema in TENANT_SCHEMAS:
        await provision_tenant_schema(engine, schema)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def audit_trail(engine: AsyncEngine, session_factory) -> AuditTrail:
    return AuditTrail(engine, session_factory)


@pytest.fixture
def override_service(session_factory, audit_trail: AuditTrail) -> OverrideService:
    return OverrideService(session_factory, audit_trail)


@pytest.fixture
async def app(engine: AsyncEngine, settings: Settings) -> AsyncIterator[FastAPI]:
    app = create_app(engine=engine, settings=settings)
    yield app
    # ASGITransport skips lifespan, so flush dispatched audit writes before the engine goes.
    await app.state.audit_trail.drain()


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@dataclass
class SchoolFixture:
    tenant_id: str
    schema_name: str
    admin_id: str
    teacher_user_id: str
    teacher_id: str
    student_id: str
    operator_id: str


@pytest.fixture
async def northridge(engine: AsyncEngine, session_factory) -> SchoolFixture:
    # Teacher T1 is assigned to class C1 / subject S1 only.
    await seed_tenant(session_factory, tenant_id="northridge", schema_name="tenant_northridge")
    await seed_tenant(session_factory, tenant_id="riverside", schema_name="tenant_riverside")
    admin_id = await seed_user(session_factory, role=Role.ADMIN, tenant_id="northridge")
    teacher_user_id = await seed_user(
        session_factory,
        role=Role.TEACHER,
        tenant_id="northridge",
        email="t1@northridge.example",
    )
    teacher_id = await seed_teacher(
        engine,
        "tenant_northridge",
        email="t1@northridge.example",
        user_id=teacher_user_id,
        assignments=(("C1", "S1"),),
    )
    student_id = await seed_user(session_factory, role=Role.STUDENT, tenant_id="northridge")
    operator_id = await seed_user(session_factory, role=Role.SUPERADMIN, tenant_id=None)
    return SchoolFixture(
        tenant_id="northridge",
        schema_name="tenant_northridge",
        admin_id=admin_id,
        teacher_user_id=teacher_user_id,
        teacher_id=teacher_id,
        student_id=student_id,
        operator_id=operator_id,
    )

from __future__ import annotations

import pytest
from sqlalchemy import event

from edugate.apps.api.errors import FORBIDDEN_MESSAGE
from edugate.domain.enums import AdditionalRole, OverrideType, Permission, Role, TenantStatus
from edugate.persistence.repos import tenants as tenants_repo
from edugate.persistence.tenancy import tenant_session
from edugate.services.overrides import OverrideInput
from edugate.tests.utils.auth import auth_headers
from edugate.tests.utils.db import seed_tenant, seed_user


async def _set_tenant_status(session_factory, tenant_id: str, status: str) -> None:
    async with session_factory() as session:
        await tenants_repo.set_tenant_status(session, tenant_id, status)
        await session.commit()


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(client) -> None:
    response = await client.get("/v1/me/permissions")
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert body["meta"]["api_version"] == "v1"
    assert response.headers["X-Request-Id"] == body["meta"]["request_id"]


@pytest.mark.asyncio
async def test_request_id_is_preserved(client, northridge) -> None:
    response = await client.get(
        "/v1/me/permissions",
        headers={**auth_headers(northridge.teacher_user_id), "X-Request-Id": "req-123"},
    )
    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-123"
    assert response.json()["meta"]["request_id"] == "req-123"
    assert response.json()["meta"]["tenant_id"] == "northridge"


@pytest.mark.asyncio
async def test_cross_tenant_hint_is_a_mismatch(client, northridge) -> None:
    response = await client.get(
        "/v1/me/permissions",
        headers=auth_headers(northridge.teacher_user_id, tenant="riverside"),
    )
    assert response.status_code == 403
    assert response.json()["error"] == {"code": "AUTH_FORBIDDEN", "message": FORBIDDEN_MESSAGE}


@pytest.mark.asyncio
@pytest.mark.parametrize("hint", ["nowhere", "../../etc/passwd", "x" * 300])
async def test_unknown_or_malformed_tenant_is_not_found(client, northridge, hint: str) -> None:
    response = await client.get(
        "/v1/me/permissions",
        headers=auth_headers(northridge.teacher_user_id, tenant=hint),
    )
    assert response.status_code == 404
    assert response.json()["error"] == {"code": "TENANT_NOT_FOUND", "message": "School not found"}


@pytest.mark.asyncio
async def test_platform_operator_bypasses_tenant_scoping(client, northridge) -> None:
    scoped = await client.get(
        "/v1/me/permissions", headers=auth_headers(northridge.operator_id, tenant="riverside")
    )
    assert scoped.status_code == 200
    assert scoped.json()["data"]["tenant_id"] == "riverside"

    unscoped = await client.get("/v1/me/permissions", headers=auth_headers(northridge.operator_id))
    assert unscoped.status_code == 200
    assert unscoped.json()["data"]["tenant_id"] is None
    assert Permission.AUDIT_VIEW_PLATFORM in unscoped.json()["data"]["permissions"]


@pytest.mark.asyncio
async def test_user_without_tenant_is_a_mismatch(client, session_factory, northridge) -> None:
    orphan_id = await seed_user(session_factory, role=Role.TEACHER, tenant_id=None)
    response = await client.get("/v1/me/permissions", headers=auth_headers(orphan_id))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me_permissions_includes_hod_overlay(client, session_factory, northridge) -> None:
    hod_id = await seed_user(
        session_factory,
        role=Role.TEACHER,
        tenant_id="northridge",
        additional_roles=(AdditionalRole.HOD,),
    )
    response = await client.get("/v1/me/permissions", headers=auth_headers(hod_id))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["additional_roles"] == ["hod"]
    assert Permission.DEPARTMENT_ANALYTICS in data["permissions"]
    assert Permission.ATTENDANCE_MARK in data["permissions"]
    assert Permission.USERS_MANAGE not in data["permissions"]


@pytest.mark.asyncio
async def test_inactive_tenant_needs_an_override(
    client, session_factory, override_service, northridge
) -> None:
    await _set_tenant_status(session_factory, "northridge", TenantStatus.SUSPENDED)
    headers = auth_headers(northridge.teacher_user_id)

    blocked = await client.get("/v1/me/permissions", headers=headers)
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "TENANT_INACTIVE"

    await override_service.create(
        OverrideInput(
            override_type=OverrideType.TENANT_STATUS,
            target_id="northridge",
            action="reactivate",
            reason="billing dispute resolved",
        ),
        actor_id=northridge.operator_id,
    )
    allowed = await client.get("/v1/me/permissions", headers=headers)
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_inactive_user_needs_an_override(
    client, session_factory, override_service, northridge
) -> None:
    pending_id = await seed_user(
        session_factory, role=Role.TEACHER, tenant_id="northridge", status="suspended"
    )
    blocked = await client.get("/v1/me/permissions", headers=auth_headers(pending_id))
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "USER_INACTIVE"

    await override_service.create(
        OverrideInput(
            override_type=OverrideType.USER_STATUS,
            target_id=pending_id,
            action="reactivate",
            reason="identity verified by support",
        ),
        actor_id=northridge.operator_id,
    )
    allowed = await client.get("/v1/me/permissions", headers=auth_headers(pending_id))
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_invalid_stored_schema_is_a_context_error(client, session_factory) -> None:
    await seed_tenant(session_factory, tenant_id="broken", schema_name="bad-name; DROP")
    user_id = await seed_user(session_factory, role=Role.ADMIN, tenant_id="broken")
    response = await client.get("/v1/me/permissions", headers=auth_headers(user_id))
    assert response.status_code == 500
    assert response.json()["error"]["code"] == "TENANT_CONTEXT_ERROR"


@pytest.mark.asyncio
async def test_tenant_session_releases_connection_on_error(engine, northridge) -> None:
    checkouts: list[int] = []
    checkins: list[int] = []
    event.listen(engine.sync_engine.pool, "checkout", lambda *_: checkouts.append(1))
    event.listen(engine.sync_engine.pool, "checkin", lambda *_: checkins.append(1))

    with pytest.raises(RuntimeError):
        async with tenant_session(engine, "tenant_northridge") as session:
            await session.connection()
            raise RuntimeError("business failure")
    assert len(checkouts) == 1
    assert len(checkins) == 1


@pytest.mark.asyncio
async def test_tenant_id_wins_over_another_schools_domain(
    client, session_factory, northridge
) -> None:
    # Legacy row whose domain label equals another school's id.
    await seed_tenant(
        session_factory, tenant_id="lakeside", schema_name="tenant_lakeside", domain="riverside"
    )
    async with session_factory() as session:
        by_id = await tenants_repo.get_tenant_by_hint(session, "riverside")
        by_domain = await tenants_repo.get_tenant_by_hint(session, "lakeside")
    assert by_id.id == "riverside"
    assert by_domain.id == "lakeside"

    riverside_admin = await seed_user(session_factory, role=Role.ADMIN, tenant_id="riverside")
    response = await client.get(
        "/v1/me/permissions", headers=auth_headers(riverside_admin, tenant="riverside")
    )
    assert response.status_code == 200
    assert response.json()["data"]["tenant_id"] == "riverside"

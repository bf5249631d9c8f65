from __future__ import annotations

import pytest

from edugate.apps.api.errors import FORBIDDEN_MESSAGE
from edugate.core.errors import AssignmentBadRequest, AssignmentForbidden
from edugate.domain.enums import Role
from edugate.persistence.tenancy import tenant_session
from edugate.services.assignments import AssignmentOptions, AssignmentTarget, AssignmentVerifier
from edugate.services.audit import UNAUTHORIZED_ACCESS_ATTEMPT
from edugate.services.auth import AuthenticatedUser
from edugate.tests.utils.auth import auth_headers
from edugate.tests.utils.db import seed_teacher, seed_user, shared_audit_rows, tenant_audit_rows


ATTENDANCE_BODY = {"records": [{"student_id": "st-1", "status": "present"}]}


@pytest.mark.asyncio
async def test_unassigned_class_is_forbidden_and_audited_once(
    client, engine, session_factory, northridge
) -> None:
    response = await client.post(
        "/v1/classes/C2/attendance",
        json=ATTENDANCE_BODY,
        headers=auth_headers(northridge.teacher_user_id),
    )
    assert response.status_code == 403
    body = response.json()
    assert body["error"]["code"] == "AUTH_FORBIDDEN"
    assert body["error"]["message"] == FORBIDDEN_MESSAGE

    rows = await tenant_audit_rows(engine, "tenant_northridge", action=UNAUTHORIZED_ACCESS_ATTEMPT)
    assert len(rows) == 1
    assert rows[0].user_id == northridge.teacher_user_id
    assert rows[0].entity_id == "C2"
    assert rows[0].details["path"] == "/v1/classes/C2/attendance"
    assert rows[0].details["method"] == "POST"
    # Nothing leaks into another school's log or the shared log.
    assert await tenant_audit_rows(engine, "tenant_riverside") == []
    assert await shared_audit_rows(session_factory, action=UNAUTHORIZED_ACCESS_ATTEMPT) == []


@pytest.mark.asyncio
async def test_assigned_class_is_allowed(client, engine, northridge) -> None:
    response = await client.post(
        "/v1/classes/C1/attendance",
        json=ATTENDANCE_BODY,
        headers=auth_headers(northridge.teacher_user_id),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["class_id"] == "C1"
    assert data["accepted"] == 1
    assert data["assignment_bypassed"] is False
    assert await tenant_audit_rows(engine, "tenant_northridge") == []


@pytest.mark.asyncio
async def test_admin_bypasses_assignment_check(app, client, engine, northridge) -> None:
    response = await client.post(
        "/v1/classes/C2/attendance",
        json=ATTENDANCE_BODY,
        headers=auth_headers(northridge.admin_id),
    )
    assert response.status_code == 200
    assert response.json()["data"]["assignment_bypassed"] is True

    await app.state.audit_trail.drain()
    rows = await tenant_audit_rows(engine, "tenant_northridge")
    assert [row.action for row in rows] == ["POST /v1/classes/C2/attendance"]
    assert rows[0].entity_type == "ATTENDANCE"
    assert rows[0].entity_id == "C2"
    assert rows[0].details["status_code"] == 200
    assert rows[0].details["success"] is True


@pytest.mark.asyncio
async def test_grades_require_assignment_to_the_subject(client, engine, northridge) -> None:
    headers = auth_headers(northridge.teacher_user_id)
    body = {"grades": [{"student_id": "st-1", "score": 88}]}

    denied = await client.post("/v1/classes/C1/subjects/S2/grades", json=body, headers=headers)
    assert denied.status_code == 403
    allowed = await client.post("/v1/classes/C1/subjects/S1/grades", json=body, headers=headers)
    assert allowed.status_code == 200
    assert allowed.json()["data"]["subject_id"] == "S1"

    rows = await tenant_audit_rows(engine, "tenant_northridge", action=UNAUTHORIZED_ACCESS_ATTEMPT)
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_student_is_denied_by_permission_and_audited(client, engine, northridge) -> None:
    response = await client.post(
        "/v1/classes/C1/attendance",
        json=ATTENDANCE_BODY,
        headers=auth_headers(northridge.student_id),
    )
    assert response.status_code == 403
    rows = await tenant_audit_rows(engine, "tenant_northridge", action=UNAUTHORIZED_ACCESS_ATTEMPT)
    assert len(rows) == 1
    assert rows[0].details["reason"].startswith("Missing permission")


@pytest.mark.asyncio
async def test_teacher_without_roster_row_is_forbidden(
    client, engine, session_factory, northridge
) -> None:
    stray_id = await seed_user(
        session_factory,
        role=Role.TEACHER,
        tenant_id="northridge",
        email="nobody@northridge.example",
    )
    response = await client.post(
        "/v1/classes/C1/attendance", json=ATTENDANCE_BODY, headers=auth_headers(stray_id)
    )
    assert response.status_code == 403
    rows = await tenant_audit_rows(engine, "tenant_northridge", action=UNAUTHORIZED_ACCESS_ATTEMPT)
    assert len(rows) == 1
    assert rows[0].details["reason"] == "Teacher profile not found"


@pytest.mark.asyncio
async def test_teacher_resolved_by_roster_email(
    client, engine, session_factory, northridge
) -> None:
    user_id = await seed_user(
        session_factory,
        role=Role.TEACHER,
        tenant_id="northridge",
        email="Legacy.Teacher@Northridge.example",
    )
    # Legacy roster rows carry only the email, in whatever case it was typed.
    await seed_teacher(
        engine,
        "tenant_northridge",
        email="legacy.teacher@northridge.example",
        assignments=(("C7", None),),
    )
    response = await client.post(
        "/v1/classes/C7/attendance", json=ATTENDANCE_BODY, headers=auth_headers(user_id)
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_my_assignments_lists_class_ids(client, northridge) -> None:
    response = await client.get(
        "/v1/teachers/me/assignments", headers=auth_headers(northridge.teacher_user_id)
    )
    assert response.status_code == 200
    assert response.json()["data"] == {
        "teacher_id": northridge.teacher_id,
        "class_ids": ["C1"],
    }

    as_student = await client.get(
        "/v1/teachers/me/assignments", headers=auth_headers(northridge.student_id)
    )
    assert as_student.status_code == 403


@pytest.mark.asyncio
async def test_verifier_requires_a_target_and_optional_subject(engine, northridge) -> None:
    teacher = AuthenticatedUser(
        id=northridge.teacher_user_id,
        email="t1@northridge.example",
        role=Role.TEACHER,
        tenant_id="northridge",
    )
    async with tenant_session(engine, "tenant_northridge") as session:
        verifier = AssignmentVerifier(session)
        with pytest.raises(AssignmentBadRequest):
            await verifier.verify(user=teacher, target=AssignmentTarget())
        with pytest.raises(AssignmentBadRequest):
            await verifier.verify(
                user=teacher,
                target=AssignmentTarget(class_id="C1"),
                options=AssignmentOptions(require_subject=True),
            )
        decision = await verifier.verify(
            user=teacher, target=AssignmentTarget(class_id="C1", subject_id="S1")
        )
        assert decision.teacher is not None
        assert decision.teacher.id == northridge.teacher_id


@pytest.mark.asyncio
async def test_verifier_admin_bypass_can_be_disabled(engine, northridge) -> None:
    admin = AuthenticatedUser(
        id=northridge.admin_id,
        email="a@northridge.example",
        role=Role.ADMIN,
        tenant_id="northridge",
    )
    async with tenant_session(engine, "tenant_northridge") as session:
        verifier = AssignmentVerifier(session)
        decision = await verifier.verify(user=admin, target=AssignmentTarget(class_id="C9"))
        assert decision.bypassed is True
        with pytest.raises(AssignmentForbidden):
            await verifier.verify(
                user=admin,
                target=AssignmentTarget(class_id="C9"),
                options=AssignmentOptions(allow_admins=False),
            )

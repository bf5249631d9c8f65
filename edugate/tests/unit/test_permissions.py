from __future__ import annotations

from edugate.domain.enums import AdditionalRole, Permission, Role
from edugate.services.auth import AuthenticatedUser
from edugate.services.permissions import (
    effective_permissions,
    has_all,
    has_any,
    has_permission,
    is_administrator,
    is_platform_operator,
    role_permissions,
)


def test_every_role_has_a_permission_set() -> None:
    for grant in (*Role, *AdditionalRole):
        assert role_permissions(grant), grant


def test_teacher_can_mark_attendance_but_not_manage_users() -> None:
    assert has_permission(Role.TEACHER, Permission.ATTENDANCE_MARK)
    assert not has_permission(Role.TEACHER, Permission.USERS_MANAGE)
    assert not has_permission(Role.STUDENT, "attendance:mark")


def test_hod_overlay_adds_department_permissions() -> None:
    assert not has_permission(Role.TEACHER, Permission.DEPARTMENT_ANALYTICS)
    assert has_permission(
        Role.TEACHER, Permission.DEPARTMENT_ANALYTICS, additional_roles=[AdditionalRole.HOD]
    )
    # The overlay never grants user or teacher management.
    assert not has_permission(Role.TEACHER, Permission.USERS_MANAGE, additional_roles=["hod"])
    assert not has_permission(Role.TEACHER, Permission.TEACHERS_MANAGE, additional_roles=["hod"])


def test_effective_permissions_is_union_of_grants() -> None:
    combined = effective_permissions(Role.TEACHER, ["hod"])
    assert role_permissions(Role.TEACHER) <= combined
    assert role_permissions(AdditionalRole.HOD) <= combined


def test_unknown_roles_and_permissions_never_match() -> None:
    assert effective_permissions("janitor") == frozenset()
    assert not has_permission(Role.ADMIN, "users:delete_everything")
    assert not has_permission(None, Permission.DASHBOARD_VIEW)
    # Unknown additional grants are ignored rather than failing the check.
    assert has_permission(Role.TEACHER, Permission.ATTENDANCE_MARK, ["not-a-role"])


def test_has_any_and_has_all() -> None:
    perms = [Permission.ATTENDANCE_MARK, Permission.ATTENDANCE_MANAGE]
    assert has_any(Role.TEACHER, perms)
    assert not has_all(Role.TEACHER, perms)
    assert has_any(Role.ADMIN, perms)
    assert not has_any(Role.STUDENT, perms)
    assert has_all(Role.SUPERADMIN, [Permission.AUDIT_VIEW, Permission.AUDIT_VIEW_PLATFORM])


def test_audit_permissions_by_role() -> None:
    assert has_permission(Role.ADMIN, Permission.AUDIT_VIEW)
    assert not has_permission(Role.ADMIN, Permission.AUDIT_VIEW_PLATFORM)
    assert has_permission(Role.SUPERADMIN, Permission.AUDIT_VIEW_PLATFORM)
    assert not has_permission(Role.TEACHER, Permission.AUDIT_VIEW)


def test_role_classifiers() -> None:
    assert is_platform_operator(Role.SUPERADMIN)
    assert not is_platform_operator(Role.ADMIN)
    assert is_administrator(Role.ADMIN)
    assert is_administrator("superadmin")
    assert not is_administrator(Role.TEACHER)


def test_authenticated_user_role_flags_match_permission_helpers() -> None:
    for role in Role:
        user = AuthenticatedUser(id="u1", email="u1@example.test", role=role, tenant_id=None)
        assert user.is_platform_operator is is_platform_operator(role)
        assert user.is_administrator is is_administrator(role)
    unknown = AuthenticatedUser(id="u2", email="u2@example.test", role="janitor", tenant_id=None)
    assert unknown.is_administrator is False
    assert unknown.is_platform_operator is False

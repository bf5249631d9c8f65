from __future__ import annotations

from typing import Iterable

from edugate.domain.enums import AdditionalRole, Permission, Role


P = Permission

RoleGrant = Role | AdditionalRole

_ROLE_PERMISSIONS: dict[RoleGrant, frozenset[Permission]] = {
    Role.STUDENT: frozenset(
        {
            P.DASHBOARD_VIEW,
            P.ATTENDANCE_VIEW,
            P.EXAMS_VIEW,
            P.FEES_VIEW,
            P.FEES_VIEW_SELF,
            P.MESSAGES_RECEIVE,
            P.STUDENTS_VIEW_SELF,
            P.PROFILE_VIEW_SELF,
            P.SUPPORT_RAISE,
        }
    ),
    Role.TEACHER: frozenset(
        {
            P.DASHBOARD_VIEW,
            P.ATTENDANCE_MARK,
            P.ATTENDANCE_VIEW,
            P.ATTENDANCE_VIEW_OWN_CLASS,
            P.GRADES_ENTER,
            P.GRADES_EDIT,
            P.GRADES_VIEW_OWN_CLASS,
            P.PERFORMANCE_GENERATE,
            P.MESSAGES_SEND,
            P.MESSAGES_RECEIVE,
            P.STUDENTS_VIEW_OWN_CLASS,
            P.RESOURCES_UPLOAD,
            P.ANNOUNCEMENTS_POST,
        }
    ),
    # Department lead grants; user and teacher management stay with admins.
    AdditionalRole.HOD: frozenset(
        {
            P.DASHBOARD_VIEW,
            P.ATTENDANCE_VIEW,
            P.EXAMS_VIEW,
            P.GRADES_MANAGE,
            P.DEPARTMENT_ANALYTICS,
            P.REPORTS_VIEW,
            P.PERFORMANCE_CHARTS,
            P.MESSAGES_SEND,
        }
    ),
    Role.ADMIN: frozenset(
        {
            P.DASHBOARD_VIEW,
            P.BILLING_VIEW,
            P.BILLING_MANAGE,
            P.ATTENDANCE_MANAGE,
            P.ATTENDANCE_VIEW,
            P.EXAMS_MANAGE,
            P.EXAMS_VIEW,
            P.GRADES_MANAGE,
            P.FEES_MANAGE,
            P.FEES_VIEW,
            P.USERS_INVITE,
            P.USERS_MANAGE,
            P.SETTINGS_BRANDING,
            P.SETTINGS_TERMS,
            P.SETTINGS_CLASSES,
            P.STUDENTS_MANAGE,
            P.STUDENTS_VIEW_OWN_CLASS,
            P.TEACHERS_MANAGE,
            P.REPORTS_VIEW,
            P.PERFORMANCE_GENERATE,
            P.MESSAGES_SEND,
            P.MESSAGES_RECEIVE,
            P.SCHOOL_MANAGE,
            P.SUPPORT_RAISE,
            P.SUPPORT_VIEW,
            P.SUPPORT_MANAGE,
            P.ANNOUNCEMENTS_MANAGE,
            P.KB_MANAGE,
            P.STATUS_VIEW,
            P.STATUS_MANAGE,
            P.AUDIT_VIEW,
        }
    ),
    Role.SUPERADMIN: frozenset(
        {
            P.DASHBOARD_VIEW,
            P.ATTENDANCE_MANAGE,
            P.ATTENDANCE_VIEW,
            P.EXAMS_MANAGE,
            P.EXAMS_VIEW,
            P.GRADES_MANAGE,
            P.FEES_MANAGE,
            P.FEES_VIEW,
            P.USERS_INVITE,
            P.USERS_MANAGE,
            P.TENANTS_MANAGE,
            P.SETTINGS_BRANDING,
            P.SETTINGS_TERMS,
            P.SETTINGS_CLASSES,
            P.STUDENTS_MANAGE,
            P.STUDENTS_VIEW_OWN_CLASS,
            P.TEACHERS_MANAGE,
            P.REPORTS_VIEW,
            P.REPORTS_MANAGE,
            P.PERFORMANCE_GENERATE,
            P.MESSAGES_SEND,
            P.MESSAGES_RECEIVE,
            P.SCHOOL_MANAGE,
            P.SUPPORT_RAISE,
            P.SUPPORT_VIEW,
            P.SUPPORT_MANAGE,
            P.ANNOUNCEMENTS_MANAGE,
            P.KB_MANAGE,
            P.STATUS_VIEW,
            P.STATUS_MANAGE,
            P.NOTIFICATIONS_SEND,
            P.SUBSCRIPTIONS_MANAGE,
            P.SUBSCRIPTIONS_VIEW,
            P.SUBSCRIPTIONS_UPDATE,
            P.OVERRIDES_MANAGE,
            P.OVERRIDES_VIEW,
            P.OVERRIDES_CREATE,
            P.OVERRIDES_REVOKE,
            P.PERMISSION_OVERRIDES_MANAGE,
            P.PERMISSION_OVERRIDES_VIEW,
            P.AUDIT_VIEW,
            P.AUDIT_VIEW_PLATFORM,
        }
    ),
}

_missing = [grant for grant in (*Role, *AdditionalRole) if grant not in _ROLE_PERMISSIONS]
if _missing:
    raise RuntimeError(f"Role permission table is missing grants: {_missing}")


def coerce_permission(value: str | Permission) -> Permission | None:
    # Unknown tags are not errors; they simply never match.
    try:
        return Permission(value)
    except ValueError:
        return None


def coerce_grant(value: str | RoleGrant | None) -> RoleGrant | None:
    if value is None:
        return None
    for enum_cls in (Role, AdditionalRole):
        try:
            return enum_cls(value)
        except ValueError:
            continue
    return None


def role_permissions(role: str | RoleGrant | None) -> frozenset[Permission]:
    grant = coerce_grant(role)
    if grant is None:
        return frozenset()
    return _ROLE_PERMISSIONS[grant]


def effective_permissions(
    role: str | RoleGrant | None,
    additional_roles: Iterable[str | RoleGrant] = (),
) -> frozenset[Permission]:
    # Union of the primary role and every additional grant.
    permissions = set(role_permissions(role))
    for extra in additional_roles:
        permissions |= role_permissions(extra)
    return frozenset(permissions)


def has_permission(
    role: str | RoleGrant | None,
    permission: str | Permission,
    additional_roles: Iterable[str | RoleGrant] = (),
) -> bool:
    resolved = coerce_permission(permission)
    if resolved is None:
        return False
    return resolved in effective_permissions(role, additional_roles)


def has_any(
    role: str | RoleGrant | None,
    permissions: Iterable[str | Permission],
    additional_roles: Iterable[str | RoleGrant] = (),
) -> bool:
    granted = effective_permissions(role, additional_roles)
    return any(coerce_permission(item) in granted for item in permissions)


def has_all(
    role: str | RoleGrant | None,
    permissions: Iterable[str | Permission],
    additional_roles: Iterable[str | RoleGrant] = (),
) -> bool:
    granted = effective_permissions(role, additional_roles)
    return all(coerce_permission(item) in granted for item in permissions)


def is_platform_operator(role: str | RoleGrant | None) -> bool:
    return coerce_grant(role) is Role.SUPERADMIN


def is_administrator(role: str | RoleGrant | None) -> bool:
    return coerce_grant(role) in (Role.ADMIN, Role.SUPERADMIN)

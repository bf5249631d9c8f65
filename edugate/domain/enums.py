from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    # Platform operator; the only role not scoped to a single tenant.
    SUPERADMIN = "superadmin"


class AdditionalRole(StrEnum):
    # Head of department, layered on top of a teacher's primary role.
    HOD = "hod"


class TenantStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class UserStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Permission(StrEnum):
    DASHBOARD_VIEW = "dashboard:view"
    ATTENDANCE_MANAGE = "attendance:manage"
    ATTENDANCE_VIEW = "attendance:view"
    ATTENDANCE_MARK = "attendance:mark"
    ATTENDANCE_VIEW_OWN_CLASS = "attendance:view_own_class"
    EXAMS_MANAGE = "exams:manage"
    EXAMS_VIEW = "exams:view"
    GRADES_MANAGE = "grades:manage"
    GRADES_ENTER = "grades:enter"
    GRADES_EDIT = "grades:edit"
    GRADES_VIEW_OWN_CLASS = "grades:view_own_class"
    FEES_MANAGE = "fees:manage"
    FEES_VIEW = "fees:view"
    FEES_VIEW_SELF = "fees:view_self"
    USERS_INVITE = "users:invite"
    USERS_MANAGE = "users:manage"
    TENANTS_MANAGE = "tenants:manage"
    SETTINGS_BRANDING = "settings:branding"
    SETTINGS_TERMS = "settings:terms"
    SETTINGS_CLASSES = "settings:classes"
    STUDENTS_MANAGE = "students:manage"
    STUDENTS_VIEW_OWN_CLASS = "students:view_own_class"
    STUDENTS_VIEW_SELF = "students:view_self"
    TEACHERS_MANAGE = "teachers:manage"
    SCHOOL_MANAGE = "school:manage"
    DEPARTMENT_ANALYTICS = "department-analytics"
    REPORTS_VIEW = "reports:view"
    REPORTS_MANAGE = "reports:manage"
    PERFORMANCE_CHARTS = "performance:charts"
    PERFORMANCE_GENERATE = "performance:generate"
    MESSAGES_SEND = "messages:send"
    MESSAGES_RECEIVE = "messages:receive"
    PROFILE_VIEW_SELF = "profile:view_self"
    SUPPORT_RAISE = "support:raise"
    SUPPORT_VIEW = "support:view"
    SUPPORT_MANAGE = "support:manage"
    ANNOUNCEMENTS_MANAGE = "announcements:manage"
    ANNOUNCEMENTS_POST = "announcements:post"
    KB_MANAGE = "kb:manage"
    STATUS_VIEW = "status:view"
    STATUS_MANAGE = "status:manage"
    NOTIFICATIONS_SEND = "notifications:send"
    SUBSCRIPTIONS_MANAGE = "subscriptions:manage"
    SUBSCRIPTIONS_VIEW = "subscriptions:view"
    SUBSCRIPTIONS_UPDATE = "subscriptions:update"
    OVERRIDES_MANAGE = "overrides:manage"
    OVERRIDES_VIEW = "overrides:view"
    OVERRIDES_CREATE = "overrides:create"
    OVERRIDES_REVOKE = "overrides:revoke"
    PERMISSION_OVERRIDES_MANAGE = "permission_overrides:manage"
    PERMISSION_OVERRIDES_VIEW = "permission_overrides:view"
    RESOURCES_UPLOAD = "resources:upload"
    BILLING_VIEW = "billing:view"
    BILLING_MANAGE = "billing:manage"
    AUDIT_VIEW = "audit:view"
    AUDIT_VIEW_PLATFORM = "audit:view_platform"


class EntityType(StrEnum):
    SUBJECT = "SUBJECT"
    CLASS = "CLASS"
    ENROLLMENT = "ENROLLMENT"
    STUDENT = "STUDENT"
    TEACHER_ASSIGNMENT = "TEACHER_ASSIGNMENT"
    SUBJECT_REQUEST = "SUBJECT_REQUEST"
    ATTENDANCE = "ATTENDANCE"
    EXAM = "EXAM"
    GRADE = "GRADE"
    INVOICE = "INVOICE"
    ACCESS = "ACCESS"
    TENANT = "TENANT"
    USER = "USER"
    USER_SESSION = "USER_SESSION"
    NOTIFICATION = "NOTIFICATION"
    DEPARTMENT = "DEPARTMENT"
    REPORT = "REPORT"
    SETTINGS = "SETTINGS"
    OVERRIDE = "OVERRIDE"
    PERMISSION_OVERRIDE = "PERMISSION_OVERRIDE"
    SUBSCRIPTION = "SUBSCRIPTION"


class OverrideType(StrEnum):
    USER_STATUS = "user_status"
    TENANT_STATUS = "tenant_status"
    SUBSCRIPTION_LIMIT = "subscription_limit"
    FEATURE_ACCESS = "feature_access"
    QUOTA_OVERRIDE = "quota_override"
    RATE_LIMIT = "rate_limit"
    OTHER = "other"


class InvoiceStatus(StrEnum):
    OPEN = "open"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"


class PaymentStatus(StrEnum):
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"

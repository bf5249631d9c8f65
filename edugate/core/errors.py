from __future__ import annotations


class EdugateError(Exception):
    """Base error for edugate."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(EdugateError):
    """Missing or invalid deployment configuration."""


class InvalidSchemaName(EdugateError):
    """Schema identifier failed the safe-identifier check."""


class TenantNotFound(EdugateError):
    """No tenant matches the request hint."""


class TenantMismatch(EdugateError):
    """Authenticated user belongs to a different tenant than the one resolved."""


class TenantContextError(EdugateError):
    """Tenant context could not be established because of an infrastructure fault."""


class TenantInactive(EdugateError):
    """Tenant lifecycle status blocks access and no override applies."""


class AuthenticationError(EdugateError):
    """Bearer credentials are missing, malformed or unknown."""


class UserInactive(EdugateError):
    """User lifecycle status blocks access and no override applies."""


class AssignmentBadRequest(EdugateError):
    """Required class or subject identifier was not supplied."""


class AssignmentForbidden(EdugateError):
    """Caller is not allowed to act on the requested class or subject."""


class ActiveOverrideExists(EdugateError):
    """An active override already exists for the (type, target) pair."""


class OverrideNotFound(EdugateError):
    """Override id does not exist."""


class OverrideAlreadyRevoked(EdugateError):
    """Override is already inactive."""


class InvalidOverride(EdugateError):
    """Override input failed validation."""


class WebhookSignatureError(EdugateError):
    """Webhook signature header is missing, malformed, stale or wrong."""


class WebhookConfigurationError(ConfigurationError):
    """Webhook entry point has no signing secret configured."""


class WebhookPayloadError(EdugateError):
    """Webhook body is not a well-formed provider event."""


class TenantConflict(EdugateError):
    """Tenant id or domain would make another tenant's hint ambiguous."""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Iterable

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from edugate.apps.api.errors import FORBIDDEN_MESSAGE
from edugate.core.errors import AssignmentForbidden, WebhookConfigurationError
from edugate.domain.enums import Permission
from edugate.services.assignments import (
    AssignmentDecision,
    AssignmentOptions,
    AssignmentVerifier,
    extract_target,
)
from edugate.services.audit import AuditTrail
from edugate.services.auth import AuthenticatedUser, BearerAuthenticator
from edugate.services.overrides import OverrideService
from edugate.services.permissions import has_all, has_any
from edugate.services.tenancy import TenantContext, TenantResolver
from edugate.services.webhooks import WebhookProcessor


logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def get_engine(request: Request) -> AsyncEngine:
    return request.app.state.engine


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_audit_trail(request: Request) -> AuditTrail:
    return request.app.state.audit_trail


def get_override_service(request: Request) -> OverrideService:
    return request.app.state.override_service


def get_tenant_resolver(request: Request) -> TenantResolver:
    return request.app.state.tenant_resolver


def get_authenticator(request: Request) -> BearerAuthenticator:
    return request.app.state.authenticator


def get_webhook_processor(request: Request) -> WebhookProcessor:
    processor = getattr(request.app.state, "webhook_processor", None)
    if processor is None:
        raise WebhookConfigurationError("Payment webhook secret is not configured")
    return processor


def _forbidden_error() -> HTTPException:
    # Denials never say which check failed.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": FORBIDDEN_MESSAGE},
    )


async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
    authenticator: BearerAuthenticator = Depends(get_authenticator),
) -> AuthenticatedUser:
    # Domain auth errors are translated by the registered exception handler.
    user = await authenticator.authenticate(authorization)
    request.state.actor = user
    return user


def _remember_tenant(request: Request, context: TenantContext | None) -> None:
    # Middleware reads these after the response to route admin audit entries.
    request.state.tenant_schema = context.schema_name if context else None
    request.state.tenant_id = context.tenant_id if context else None


async def get_tenant_context(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> AsyncGenerator[TenantContext, None]:
    async with resolver.resolve(request, user) as context:
        _remember_tenant(request, context)
        yield context


async def get_optional_tenant_context(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> AsyncGenerator[TenantContext | None, None]:
    # Platform operators may call without naming a school.
    async with resolver.resolve(request, user, optional=True) as context:
        _remember_tenant(request, context)
        yield context


async def _json_body(request: Request) -> Any:
    if request.method not in MUTATING_METHODS:
        return None
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        return await request.json()
    except ValueError:
        return None


def _permission_names(permissions: Iterable[Permission | str]) -> list[str]:
    return [str(item) for item in permissions]


def require_permission(
    *permissions: Permission | str,
    mode: str = "all",
    tenant_optional: bool = False,
):
    """Dependency factory for role-based checks on the resolved tenant.

    ``mode="any"`` passes when at least one permission is granted. Denied
    state-changing requests are written to the audit trail before the 403.
    """
    if mode not in {"all", "any"}:
        raise ValueError(f"Unsupported permission mode: {mode}")
    tenant_dependency = get_optional_tenant_context if tenant_optional else get_tenant_context
    required = tuple(permissions)

    async def _dependency(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),
        tenant: TenantContext | None = Depends(tenant_dependency),
        audit: AuditTrail = Depends(get_audit_trail),
    ) -> AuthenticatedUser:
        check = has_all if mode == "all" else has_any
        if check(user.role, required, user.additional_roles):
            return user
        logger.info(
            "permission_denied user_id=%s role=%s required=%s path=%s",
            user.id,
            user.role,
            ",".join(_permission_names(required)),
            request.url.path,
        )
        if request.method in MUTATING_METHODS:
            await audit.record_unauthorized_attempt(
                request=request,
                reason=f"Missing permission: {', '.join(_permission_names(required))}",
                user_id=user.id,
                user_role=user.role,
                schema_name=tenant.schema_name if tenant else None,
                tenant_id=tenant.tenant_id if tenant else user.tenant_id,
            )
        raise _forbidden_error()

    return _dependency


def require_teacher_assignment(
    *,
    class_id_param: str = "class_id",
    subject_id_param: str = "subject_id",
    require_subject: bool = False,
    allow_admins: bool = True,
):
    # Dependency factory confining teachers to the classes and subjects they teach.
    options = AssignmentOptions(
        class_id_param=class_id_param,
        subject_id_param=subject_id_param,
        require_subject=require_subject,
        allow_admins=allow_admins,
    )

    async def _dependency(
        request: Request,
        user: AuthenticatedUser = Depends(get_current_user),
        tenant: TenantContext = Depends(get_tenant_context),
        audit: AuditTrail = Depends(get_audit_trail),
    ) -> AssignmentDecision:
        target = extract_target(
            path_params=request.path_params,
            body=await _json_body(request),
            query=request.query_params,
            options=options,
        )
        verifier = AssignmentVerifier(tenant.session)
        try:
            decision = await verifier.verify(
                user=user,
                target=target,
                options=options,
                cached_teacher=getattr(request.state, "teacher", None),
            )
        except AssignmentForbidden as exc:
            logger.info(
                "assignment_denied user_id=%s class_id=%s subject_id=%s reason=%s",
                user.id,
                target.class_id,
                target.subject_id,
                exc.message,
            )
            # Every denial is recorded before the caller sees the 403.
            await audit.record_unauthorized_attempt(
                request=request,
                reason=exc.message,
                user_id=user.id,
                user_role=user.role,
                schema_name=tenant.schema_name,
                tenant_id=tenant.tenant_id,
                entity_id=target.class_id or target.subject_id,
            )
            raise _forbidden_error() from exc
        if decision.teacher is not None:
            request.state.teacher = decision.teacher
        return decision

    return _dependency

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from edugate.apps.api.admin_audit import dispatch_admin_action, parse_body, should_capture_body
from edugate.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from edugate.apps.api.response import API_VERSION
from edugate.apps.api.routes.audit import router as audit_router
from edugate.apps.api.routes.classes import router as classes_router
from edugate.apps.api.routes.health import router as health_router
from edugate.apps.api.routes.me import router as me_router
from edugate.apps.api.routes.overrides import router as overrides_router
from edugate.apps.api.routes.teachers import router as teachers_router
from edugate.apps.api.routes.webhooks import router as webhooks_router
from edugate.core.config import Settings, get_settings
from edugate.core.errors import EdugateError
from edugate.core.logging import configure_logging
from edugate.persistence.db import build_session_factory, create_engine_from_settings
from edugate.services.audit import AuditTrail
from edugate.services.auth import BearerAuthenticator
from edugate.services.overrides import OverrideService
from edugate.services.tenancy import TenantResolver
from edugate.services.webhooks import WebhookProcessor


logger = logging.getLogger(__name__)


def create_app(engine: AsyncEngine | None = None, settings: Settings | None = None) -> FastAPI:
    resolved_settings = settings or get_settings()
    configure_logging(resolved_settings.log_level)
    resolved_engine = engine or create_engine_from_settings(resolved_settings)
    session_factory = build_session_factory(resolved_engine)
    audit_trail = AuditTrail(resolved_engine, session_factory)
    override_service = OverrideService(session_factory, audit_trail)

    webhook_processor: WebhookProcessor | None = None
    if resolved_settings.payment_webhook_secret:
        webhook_processor = WebhookProcessor(
            session_factory=session_factory,
            audit=audit_trail,
            secret=resolved_settings.payment_webhook_secret,
            provider=resolved_settings.payment_webhook_provider,
            tolerance_s=resolved_settings.payment_webhook_tolerance_s,
        )
    else:
        # The endpoint answers 500 until a secret is configured.
        logger.error(
            "payment_webhook_secret_missing provider=%s",
            resolved_settings.payment_webhook_provider,
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        # Flush in-flight audit writes before the pool goes away.
        await audit_trail.drain()
        if engine is None:
            await resolved_engine.dispose()

    app = FastAPI(title="Edugate API", lifespan=lifespan)
    app.state.settings = resolved_settings
    app.state.engine = resolved_engine
    app.state.session_factory = session_factory
    app.state.audit_trail = audit_trail
    app.state.override_service = override_service
    app.state.tenant_resolver = TenantResolver(
        resolved_engine, session_factory, override_service, resolved_settings
    )
    app.state.authenticator = BearerAuthenticator(
        session_factory, override_service, resolved_settings
    )
    app.state.webhook_processor = webhook_processor

    @app.middleware("http")
    async def admin_action_audit_middleware(request: Request, call_next):  # type: ignore[override]
        # Record state-changing admin requests once the outcome is known.
        if not resolved_settings.audit_admin_actions_enabled:
            return await call_next(request)
        body = None
        if should_capture_body(request):
            body = parse_body(await request.body())
        response = await call_next(request)
        dispatch_admin_action(
            audit_trail,
            request,
            status_code=response.status_code,
            body=body,
        )
        return response

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(EdugateError)
    async def _domain_exception_handler(request: Request, exc: EdugateError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(me_router, prefix=f"/{API_VERSION}")
    app.include_router(classes_router, prefix=f"/{API_VERSION}")
    app.include_router(teachers_router, prefix=f"/{API_VERSION}")
    # Tenant log for school admins, shared log for platform operators.
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(overrides_router, prefix=f"/{API_VERSION}")
    # Provider callbacks authenticate by signature, not bearer token.
    app.include_router(webhooks_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()

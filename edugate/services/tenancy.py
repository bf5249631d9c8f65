from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import re
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from starlette.requests import Request

from edugate.core.config import Settings, get_settings
from edugate.core.errors import (
    InvalidSchemaName,
    TenantConflict,
    TenantContextError,
    TenantInactive,
    TenantMismatch,
    TenantNotFound,
)
from edugate.domain.enums import OverrideType, TenantStatus
from edugate.domain.models import Tenant
from edugate.persistence.guards import create_schema_slug, validate_schema_name
from edugate.persistence.repos import tenants as tenants_repo
from edugate.persistence.tenancy import provision_tenant_schema, tenant_session
from edugate.services.auth import AuthenticatedUser
from edugate.services.overrides import OverrideService


logger = logging.getLogger(__name__)

TENANT_NOT_FOUND_MESSAGE = "School not found"
# Hints are ids or host labels; anything else cannot name a tenant.
_HINT_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,252}")
_IGNORED_SUBDOMAINS = {"www", "api", "app"}


@dataclass
class TenantContext:
    tenant_id: str
    schema_name: str
    status: str
    # Session whose tenant tables resolve to ``schema_name`` only.
    session: AsyncSession
    override_applied: bool = False


class TenantResolver:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        overrides: OverrideService,
        settings: Settings | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._overrides = overrides
        self._settings = settings or get_settings()

    def _subdomain_hint(self, request: Request) -> str | None:
        base_domain = (self._settings.tenant_base_domain or "").strip(".").lower()
        if not base_domain:
            return None
        host = (request.headers.get("host") or request.url.hostname or "").split(":")[0].lower()
        suffix = f".{base_domain}"
        if not host.endswith(suffix):
            return None
        label = host[: -len(suffix)].split(".")[0]
        if not label or label in _IGNORED_SUBDOMAINS:
            return None
        return label

    def extract_hint(self, request: Request, user: AuthenticatedUser | None) -> str | None:
        # Try each configured source in order; the first non-empty hint wins.
        for source in self._settings.resolution_order():
            if source == "header":
                value = (request.headers.get(self._settings.tenant_header_name) or "").strip()
                if value:
                    return value
            elif source == "subdomain":
                value = self._subdomain_hint(request)
                if value:
                    return value
            elif source == "claim":
                if user is not None and user.tenant_id:
                    return user.tenant_id
        return None

    async def _load_tenant(self, hint: str) -> Tenant:
        if _HINT_RE.fullmatch(hint) is None:
            raise TenantNotFound(TENANT_NOT_FOUND_MESSAGE)
        try:
            async with self._session_factory() as session:
                tenant = await tenants_repo.get_tenant_by_hint(session, hint)
        except SQLAlchemyError as exc:
            logger.error("tenant_lookup_failed hint=%s", hint, exc_info=exc)
            raise TenantContextError("Tenant context unavailable") from exc
        if tenant is None:
            raise TenantNotFound(TENANT_NOT_FOUND_MESSAGE)
        return tenant

    @asynccontextmanager
    async def resolve(
        self,
        request: Request,
        user: AuthenticatedUser | None,
        *,
        optional: bool = False,
    ) -> AsyncIterator[TenantContext | None]:
        """Resolve the request's tenant and yield a schema-pinned context.

        Platform operators may act on any tenant and, with ``optional``, on
        none. Everyone else is confined to their own tenant. The tenant
        session is closed when the block exits, whatever the outcome.
        """
        is_operator = user is not None and user.is_platform_operator
        hint = self.extract_hint(request, user)
        if hint is None:
            if optional and is_operator:
                yield None
                return
            if user is not None and not is_operator and not user.tenant_id:
                raise TenantMismatch("User is not associated with a school")
            raise TenantNotFound(TENANT_NOT_FOUND_MESSAGE)

        tenant = await self._load_tenant(hint)
        if not is_operator:
            if user is None or not user.tenant_id or user.tenant_id != tenant.id:
                logger.warning(
                    "tenant_mismatch user_id=%s user_tenant=%s resolved_tenant=%s",
                    user.id if user else None,
                    user.tenant_id if user else None,
                    tenant.id,
                )
                raise TenantMismatch("Tenant mismatch")

        try:
            schema_name = validate_schema_name(tenant.schema_name)
        except InvalidSchemaName as exc:
            logger.error("tenant_schema_invalid tenant_id=%s", tenant.id)
            raise TenantContextError("Tenant context unavailable") from exc

        override_applied = False
        if tenant.status != TenantStatus.ACTIVE and not is_operator:
            override_applied = await self._overrides.has_active(
                OverrideType.TENANT_STATUS, tenant.id
            )
            if not override_applied:
                raise TenantInactive("This school's account is not active.")

        async with tenant_session(self._engine, schema_name) as session:
            yield TenantContext(
                tenant_id=tenant.id,
                schema_name=schema_name,
                status=tenant.status,
                session=session,
                override_applied=override_applied,
            )


async def _ensure_unambiguous(
    session: AsyncSession, *, tenant_id: str, domain: str | None
) -> None:
    # Ids and domain labels share one hint namespace; neither may shadow another tenant.
    if await tenants_repo.hint_in_use(session, tenant_id):
        raise TenantConflict(f"Tenant id {tenant_id} is already used as a hint")
    if domain and await tenants_repo.hint_in_use(session, domain):
        raise TenantConflict(f"Domain {domain} is already used as a hint")


async def register_tenant(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    tenant_id: str,
    name: str,
    domain: str | None = None,
    schema_name: str | None = None,
) -> Tenant:
    """Create the tenant row (if absent) and provision its schema.

    Safe to re-run: an existing tenant keeps its recorded schema and the
    schema DDL is idempotent.
    """
    async with session_factory() as session:
        tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is None:
            await _ensure_unambiguous(session, tenant_id=tenant_id, domain=domain)
            resolved_schema = validate_schema_name(schema_name or create_schema_slug(tenant_id))
            tenant = await tenants_repo.create_tenant(
                session,
                tenant_id=tenant_id,
                name=name,
                schema_name=resolved_schema,
                domain=domain,
            )
            await session.commit()
            logger.info("tenant_registered tenant_id=%s schema=%s", tenant_id, resolved_schema)
    await provision_tenant_schema(engine, tenant.schema_name)
    logger.info("tenant_schema_provisioned tenant_id=%s schema=%s", tenant.id, tenant.schema_name)
    return tenant

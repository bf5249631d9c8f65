from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
import logging
import re
from typing import Any, Awaitable, Mapping

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from starlette.requests import Request

from edugate.core.config import get_settings
from edugate.domain.enums import EntityType
from edugate.domain.models import SharedAuditLog, TenantAuditLog
from edugate.persistence.repos import audit as audit_repo
from edugate.persistence.tenancy import tenant_session
from edugate.services.permissions import is_platform_operator


logger = logging.getLogger(__name__)

UNAUTHORIZED_ACCESS_ATTEMPT = "unauthorized_access_attempt"

_SENSITIVE_KEY_PATTERNS = ("password", "token", "secret", "apikey", "authorization")
_REDACTED_VALUE = "[REDACTED]"
_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)

_RESOURCE_ENTITY_TYPES: dict[str, EntityType] = {
    "users": EntityType.USER,
    "students": EntityType.STUDENT,
    "teachers": EntityType.USER,
    "schools": EntityType.TENANT,
    "tenants": EntityType.TENANT,
    "classes": EntityType.CLASS,
    "subjects": EntityType.SUBJECT,
    "enrollments": EntityType.ENROLLMENT,
    "assignments": EntityType.TEACHER_ASSIGNMENT,
    "exams": EntityType.EXAM,
    "grades": EntityType.GRADE,
    "attendance": EntityType.ATTENDANCE,
    "invoices": EntityType.INVOICE,
    "payments": EntityType.INVOICE,
    "subscriptions": EntityType.SUBSCRIPTION,
    "overrides": EntityType.OVERRIDE,
    "permission-overrides": EntityType.PERMISSION_OVERRIDE,
    "sessions": EntityType.USER_SESSION,
    "notifications": EntityType.NOTIFICATION,
    "departments": EntityType.DEPARTMENT,
    "reports": EntityType.REPORT,
    "settings": EntityType.SETTINGS,
    "configuration": EntityType.TENANT,
    "branding": EntityType.TENANT,
}

_ENTITY_ID_KEYS = (
    "id",
    "user_id",
    "userId",
    "student_id",
    "studentId",
    "teacher_id",
    "teacherId",
    "school_id",
    "schoolId",
    "tenant_id",
    "tenantId",
    "class_id",
    "classId",
    "subject_id",
    "subjectId",
    "override_id",
    "overrideId",
)


@dataclass(frozen=True)
class AuditEntry:
    action: str
    entity_type: EntityType
    user_id: str | None = None
    user_role: str | None = None
    entity_id: str | None = None
    target: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    # Only stored in the shared log, to tie platform actions to a school.
    tenant_id: str | None = None


@dataclass(frozen=True)
class AuditFilters:
    entity_type: str | None = None
    user_id: str | None = None
    action: str | None = None
    tenant_id: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int | None = None


def _normalize_key(key: str) -> str:
    return key.lower().replace("_", "").replace("-", "").replace(" ", "")


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively; api_key, apiKey and Api-Key all match.
    normalized = _normalize_key(key)
    return any(pattern in normalized for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_details(value: Any) -> Any:
    # Recursively scrub sensitive fields and coerce leaves to JSON-safe values.
    if isinstance(value, Mapping):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_details(raw_value)
        return sanitized
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_details(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def normalize_actor_id(user_id: object) -> str | None:
    # Malformed actor ids become an unknown actor rather than failing the write.
    if not isinstance(user_id, str):
        return None
    candidate = user_id.strip()
    if _UUID_RE.fullmatch(candidate) is None:
        return None
    return candidate.lower()


def resolve_entity_type(path: str) -> EntityType:
    # The last non-empty path segment names the resource.
    segments = [segment for segment in path.split("?")[0].split("/") if segment]
    if not segments:
        return EntityType.ACCESS
    return _RESOURCE_ENTITY_TYPES.get(segments[-1].lower(), EntityType.ACCESS)


def extract_entity_id(
    path_params: Mapping[str, Any] | None,
    body: Any = None,
) -> str | None:
    # Path parameters win over body fields.
    for source in (path_params or {}, body if isinstance(body, Mapping) else {}):
        for key in _ENTITY_ID_KEYS:
            value = source.get(key)
            if value not in (None, ""):
                return str(value)
    return None


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_values(entry: AuditEntry, *, shared: bool) -> dict[str, Any]:
    values: dict[str, Any] = {
        "user_id": normalize_actor_id(entry.user_id),
        "user_role": entry.user_role,
        "action": entry.action,
        "entity_type": str(entry.entity_type),
        "entity_id": entry.entity_id,
        "target": entry.target,
        "details": sanitize_details(entry.details or {}),
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": datetime.now(timezone.utc),
    }
    if shared:
        values["tenant_id"] = entry.tenant_id
    return values


class AuditTrail:
    """Tenant-scoped and platform-wide audit logs.

    The ``record_*`` methods never raise: any failure is logged and swallowed so
    an audit outage cannot change the outcome of the request that triggered it.
    Each log is written in its own session, independent of the caller's
    transaction.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._pending: set[asyncio.Task[None]] = set()

    async def record_tenant_event(self, schema_name: str, entry: AuditEntry) -> None:
        try:
            values = _row_values(entry, shared=False)
            async with tenant_session(self._engine, schema_name) as session:
                await audit_repo.insert_entry(session, TenantAuditLog, values=values)
        except Exception as exc:  # noqa: BLE001 - audit writes must never fail the caller.
            logger.warning(
                "audit_write_failed target=tenant schema=%s action=%s",
                schema_name,
                entry.action,
                exc_info=exc,
            )

    async def record_shared_event(self, entry: AuditEntry) -> None:
        try:
            values = _row_values(entry, shared=True)
            async with self._session_factory() as session:
                await audit_repo.insert_entry(session, SharedAuditLog, values=values)
        except Exception as exc:  # noqa: BLE001 - audit writes must never fail the caller.
            logger.warning(
                "audit_write_failed target=shared action=%s",
                entry.action,
                exc_info=exc,
            )

    async def record_for_actor(
        self,
        entry: AuditEntry,
        *,
        actor_role: str | None,
        schema_name: str | None,
        tenant_id: str | None = None,
    ) -> None:
        # Platform operators land in the shared log (plus the tenant log when one was resolved).
        if is_platform_operator(actor_role):
            await self.record_shared_event(replace(entry, tenant_id=entry.tenant_id or tenant_id))
            if schema_name:
                await self.record_tenant_event(schema_name, entry)
            return
        if schema_name:
            await self.record_tenant_event(schema_name, entry)
            return
        await self.record_shared_event(replace(entry, tenant_id=entry.tenant_id or tenant_id))

    async def record_unauthorized_attempt(
        self,
        *,
        request: Request,
        reason: str,
        user_id: str | None,
        user_role: str | None,
        schema_name: str | None,
        tenant_id: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        request_ctx = get_request_context(request)
        entry = AuditEntry(
            action=UNAUTHORIZED_ACCESS_ATTEMPT,
            entity_type=EntityType.ACCESS,
            user_id=user_id,
            user_role=user_role,
            entity_id=entity_id,
            target=request.url.path,
            details={
                "path": request.url.path,
                "method": request.method,
                "reason": reason,
                "request_id": request_ctx["request_id"],
            },
            ip_address=request_ctx["ip_address"],
            user_agent=request_ctx["user_agent"],
        )
        await self.record_for_actor(
            entry, actor_role=user_role, schema_name=schema_name, tenant_id=tenant_id
        )

    def dispatch(self, write: Awaitable[None]) -> asyncio.Task[None]:
        # Fire-and-forget, but tracked so shutdown can wait for in-flight writes.
        task = asyncio.ensure_future(write)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _bounded_limit(self, limit: int | None) -> int:
        settings = get_settings()
        resolved = limit if limit is not None else settings.audit_list_default_limit
        return max(1, min(int(resolved), int(settings.audit_list_max_limit)))

    async def list_tenant_events(
        self,
        schema_name: str,
        filters: AuditFilters | None = None,
    ) -> list[TenantAuditLog]:
        resolved = filters or AuditFilters()
        async with tenant_session(self._engine, schema_name) as session:
            return await audit_repo.list_entries(
                session,
                TenantAuditLog,
                entity_type=resolved.entity_type,
                user_id=resolved.user_id,
                action=resolved.action,
                created_from=_as_utc(resolved.created_from),
                created_to=_as_utc(resolved.created_to),
                limit=self._bounded_limit(resolved.limit),
            )

    async def list_shared_events(self, filters: AuditFilters | None = None) -> list[SharedAuditLog]:
        resolved = filters or AuditFilters()
        async with self._session_factory() as session:
            return await audit_repo.list_entries(
                session,
                SharedAuditLog,
                entity_type=resolved.entity_type,
                user_id=resolved.user_id,
                action=resolved.action,
                tenant_id=resolved.tenant_id,
                created_from=_as_utc(resolved.created_from),
                created_to=_as_utc(resolved.created_to),
                limit=self._bounded_limit(resolved.limit),
            )

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import Request

from edugate.apps.api.deps import MUTATING_METHODS
from edugate.services.audit import (
    AuditEntry,
    AuditTrail,
    extract_entity_id,
    get_request_context,
    resolve_entity_type,
    sanitize_details,
)
from edugate.services.auth import AuthenticatedUser


logger = logging.getLogger(__name__)

# Signed provider callbacks are verified against the raw body and never carry an admin actor.
_SKIPPED_PREFIXES = ("/v1/webhooks",)


def should_capture_body(request: Request) -> bool:
    if request.method not in MUTATING_METHODS:
        return False
    if request.url.path.startswith(_SKIPPED_PREFIXES):
        return False
    return "application/json" in request.headers.get("content-type", "")


def parse_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        return None


def build_admin_action_entry(
    request: Request,
    *,
    actor: AuthenticatedUser,
    status_code: int,
    body: Any,
) -> AuditEntry:
    # Snapshot the request now; the write itself runs after the response is sent.
    path = request.url.path
    path_params = dict(request.path_params)
    request_ctx = get_request_context(request)
    details: dict[str, Any] = {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "success": 200 <= status_code < 300,
        "body": sanitize_details(body) if isinstance(body, dict) else None,
        "params": path_params,
        "query": dict(request.query_params),
        "ip": request_ctx["ip_address"],
        "user_agent": request_ctx["user_agent"],
        "request_id": request_ctx["request_id"],
    }
    return AuditEntry(
        action=f"{request.method} {path}",
        entity_type=resolve_entity_type(path),
        entity_id=extract_entity_id(path_params, body),
        user_id=actor.id,
        user_role=actor.role,
        target=path,
        details=details,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
    )


def dispatch_admin_action(
    audit: AuditTrail,
    request: Request,
    *,
    status_code: int,
    body: Any,
) -> bool:
    """Queue an audit write for a completed state-changing admin request.

    Returns False when the request does not qualify: unauthenticated, not an
    administrator, or a read-only method.
    """
    if request.method not in MUTATING_METHODS:
        return False
    actor = getattr(request.state, "actor", None)
    if not isinstance(actor, AuthenticatedUser) or not actor.is_administrator:
        return False
    entry = build_admin_action_entry(request, actor=actor, status_code=status_code, body=body)
    schema_name = getattr(request.state, "tenant_schema", None)
    tenant_id = getattr(request.state, "tenant_id", None) or actor.tenant_id
    if not actor.is_platform_operator and not schema_name:
        # School admins only write to their school's log.
        logger.info(
            "admin_action_unaudited user_id=%s path=%s reason=no_tenant",
            actor.id,
            request.url.path,
        )
        return False
    audit.dispatch(
        audit.record_for_actor(
            entry,
            actor_role=actor.role,
            schema_name=schema_name,
            tenant_id=tenant_id,
        )
    )
    return True

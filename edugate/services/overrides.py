from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.core.errors import (
    ActiveOverrideExists,
    InvalidOverride,
    OverrideAlreadyRevoked,
    OverrideNotFound,
)
from edugate.domain.enums import EntityType, OverrideType, Role
from edugate.domain.models import ManualOverride
from edugate.persistence.repos import overrides as overrides_repo
from edugate.services.audit import AuditEntry, AuditTrail


logger = logging.getLogger(__name__)

DEFAULT_REVOKE_REASON = "Override revoked by platform operator"


@dataclass(frozen=True)
class OverrideInput:
    override_type: OverrideType | str
    target_id: str
    action: str
    reason: str
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OverrideFilters:
    override_type: OverrideType | str | None = None
    target_id: str | None = None
    is_active: bool | None = None
    created_by: str | None = None
    limit: int = 200


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_override_type(value: OverrideType | str) -> OverrideType:
    try:
        return OverrideType(value)
    except ValueError as exc:
        raise InvalidOverride(f"Unknown override type: {value}") from exc


def _tenant_for(override_type: OverrideType, target_id: str) -> str | None:
    # Tenant-status overrides are the only ones whose target is a school.
    return target_id if override_type is OverrideType.TENANT_STATUS else None


class OverrideService:
    """Time-bounded, reason-logged exceptions granted by platform operators.

    At most one active override exists per (type, target). The partial unique
    index on ``manual_overrides`` decides concurrent creates; the losing
    caller sees ``ActiveOverrideExists``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditTrail,
    ) -> None:
        self._session_factory = session_factory
        self._audit = audit

    async def create(self, data: OverrideInput, actor_id: str) -> ManualOverride:
        override_type = coerce_override_type(data.override_type)
        target_id = (data.target_id or "").strip()
        action = (data.action or "").strip()
        reason = (data.reason or "").strip()
        if not target_id:
            raise InvalidOverride("Override target is required")
        if not action:
            raise InvalidOverride("Override action is required")
        if not reason:
            raise InvalidOverride("Override reason is required")
        now = _utc_now()
        expires_at = _as_utc(data.expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidOverride("Override expiry must be in the future")

        override = ManualOverride(
            id=str(uuid4()),
            override_type=str(override_type),
            target_id=target_id,
            action=action,
            reason=reason,
            created_by=actor_id,
            expires_at=expires_at,
            metadata_json=dict(data.metadata or {}),
            is_active=True,
            created_at=now,
        )
        async with self._session_factory() as session:
            try:
                # Expired rows still flagged active would otherwise hold the unique slot.
                await overrides_repo.deactivate_expired(
                    session, now=now, override_type=str(override_type), target_id=target_id
                )
                existing = await overrides_repo.get_active_for(
                    session, override_type=str(override_type), target_id=target_id, now=now
                )
                if existing:
                    raise ActiveOverrideExists(
                        f"An active {override_type} override already exists for {target_id}"
                    )
                session.add(override)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ActiveOverrideExists(
                    f"An active {override_type} override already exists for {target_id}"
                ) from exc

        logger.info(
            "override_created id=%s type=%s target=%s actor=%s",
            override.id,
            override_type,
            target_id,
            actor_id,
        )
        await self._audit.record_shared_event(
            AuditEntry(
                action="OVERRIDE_CREATED",
                entity_type=EntityType.OVERRIDE,
                entity_id=override.id,
                user_id=actor_id,
                user_role=Role.SUPERADMIN,
                target=f"{override_type}:{target_id}",
                tenant_id=_tenant_for(override_type, target_id),
                details={
                    "override_type": str(override_type),
                    "target_id": target_id,
                    "action": action,
                    "reason": reason,
                    "expires_at": expires_at,
                    "metadata": override.metadata_json,
                },
            )
        )
        return override

    async def revoke(
        self,
        override_id: str,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> ManualOverride:
        resolved_reason = (reason or "").strip() or DEFAULT_REVOKE_REASON
        now = _utc_now()
        async with self._session_factory() as session:
            current = await overrides_repo.get_override(session, override_id)
            if current is None:
                raise OverrideNotFound("Override not found")
            if not current.is_active:
                raise OverrideAlreadyRevoked("Override is already inactive")
            changed = await overrides_repo.revoke_override(
                session,
                override_id=override_id,
                revoked_by=actor_id,
                reason=resolved_reason,
                now=now,
            )
            if changed != 1:
                # Another revoke won between the read and the update.
                await session.rollback()
                raise OverrideAlreadyRevoked("Override is already inactive")
            await session.commit()
            await session.refresh(current)
            revoked = current

        override_type = coerce_override_type(revoked.override_type)
        logger.info("override_revoked id=%s actor=%s", override_id, actor_id)
        await self._audit.record_shared_event(
            AuditEntry(
                action="OVERRIDE_REVOKED",
                entity_type=EntityType.OVERRIDE,
                entity_id=override_id,
                user_id=actor_id,
                user_role=Role.SUPERADMIN,
                target=f"{override_type}:{revoked.target_id}",
                tenant_id=_tenant_for(override_type, revoked.target_id),
                details={
                    "override_type": str(override_type),
                    "target_id": revoked.target_id,
                    "reason": resolved_reason,
                },
            )
        )
        return revoked

    async def get(self, override_id: str) -> ManualOverride:
        async with self._session_factory() as session:
            override = await overrides_repo.get_override(session, override_id)
        if override is None:
            raise OverrideNotFound("Override not found")
        return override

    async def list_overrides(self, filters: OverrideFilters | None = None) -> list[ManualOverride]:
        resolved = filters or OverrideFilters()
        override_type = (
            str(coerce_override_type(resolved.override_type)) if resolved.override_type else None
        )
        async with self._session_factory() as session:
            return await overrides_repo.list_overrides(
                session,
                override_type=override_type,
                target_id=resolved.target_id,
                is_active=resolved.is_active,
                created_by=resolved.created_by,
                limit=max(1, min(int(resolved.limit), 1000)),
            )

    async def get_active_for(
        self,
        override_type: OverrideType | str,
        target_id: str,
    ) -> list[ManualOverride]:
        resolved_type = coerce_override_type(override_type)
        async with self._session_factory() as session:
            return await overrides_repo.get_active_for(
                session, override_type=str(resolved_type), target_id=target_id, now=_utc_now()
            )

    async def has_active(self, override_type: OverrideType | str, target_id: str) -> bool:
        return bool(await self.get_active_for(override_type, target_id))

    async def cleanup_expired(self) -> int:
        # Idempotent: only rows still active and past expiry are touched.
        async with self._session_factory() as session:
            expired = await overrides_repo.deactivate_expired(session, now=_utc_now())
            await session.commit()
        if expired:
            logger.info("override_sweep_completed expired=%s", expired)
        return expired

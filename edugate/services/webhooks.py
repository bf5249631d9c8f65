from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.core.errors import (
    WebhookConfigurationError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from edugate.persistence.repos import external_events as events_repo
from edugate.services.audit import AuditEntry, AuditTrail
from edugate.services.billing import WebhookHandler, default_handlers


logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"
DUPLICATE_MESSAGE = "Event already processed"


def build_signature(secret: str, timestamp: int, payload: bytes) -> str:
    # HMAC-SHA256 over "<timestamp>.<raw body>".
    signed = str(int(timestamp)).encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def build_signature_header(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    resolved = int(timestamp if timestamp is not None else time.time())
    return f"t={resolved},{SIGNATURE_SCHEME}={build_signature(secret, resolved, payload)}"


def parse_signature_header(header: str | None) -> tuple[int, list[str]]:
    if not header:
        raise WebhookSignatureError("Missing signature header")
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureError("Malformed signature timestamp") from exc
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    return timestamp, signatures


def verify_signature(
    *,
    secret: str,
    payload: bytes,
    header: str | None,
    tolerance_s: int,
    now: float | None = None,
) -> int:
    # Constant-time comparison against every v1 signature in the header.
    timestamp, signatures = parse_signature_header(header)
    current = now if now is not None else time.time()
    if tolerance_s > 0 and abs(current - timestamp) > tolerance_s:
        raise WebhookSignatureError("Signature timestamp outside tolerance")
    expected = build_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature mismatch")
    return timestamp


class WebhookIdempotencyGuard:
    """(provider, event id) bookkeeping for externally delivered events.

    The unique constraint on ``external_events`` is the authority; the
    ``is_processed`` read only saves work on obvious retries.
    """

    async def is_processed(
        self,
        session: AsyncSession,
        *,
        provider: str,
        event_id: str,
        lock: bool = False,
    ) -> bool:
        _exists, processed_at = await events_repo.get_processed_at(
            session, provider=provider, provider_event_id=event_id, for_update=lock
        )
        return processed_at is not None

    async def claim(
        self,
        session: AsyncSession,
        *,
        provider: str,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> None:
        await events_repo.claim_event(
            session,
            provider=provider,
            provider_event_id=event_id,
            event_type=event_type,
            payload=payload,
        )

    async def mark_processed(
        self,
        session: AsyncSession,
        *,
        provider: str,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> None:
        await events_repo.upsert_processed(
            session,
            provider=provider,
            provider_event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed_at=datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    duplicate: bool
    handled: bool

    def as_response(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "received": True,
            "duplicate": self.duplicate,
            "event_id": self.event_id,
        }
        if self.duplicate:
            payload["message"] = DUPLICATE_MESSAGE
        else:
            payload["handled"] = self.handled
        return payload


def parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookPayloadError("Webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise WebhookPayloadError("Webhook event id is missing")
    if not isinstance(event_type, str) or not event_type:
        raise WebhookPayloadError("Webhook event type is missing")
    return event


class WebhookProcessor:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditTrail,
        secret: str | None,
        provider: str,
        tolerance_s: int = 300,
        handlers: Mapping[str, WebhookHandler] | None = None,
    ) -> None:
        if not secret:
            raise WebhookConfigurationError("Payment webhook secret is not configured")
        self._session_factory = session_factory
        self._audit = audit
        self._secret = secret
        self._provider = provider
        self._tolerance_s = tolerance_s
        self._handlers = dict(handlers) if handlers is not None else default_handlers()
        self._guard = WebhookIdempotencyGuard()

    @property
    def provider(self) -> str:
        return self._provider

    async def process(self, payload: bytes, signature_header: str | None) -> WebhookResult:
        verify_signature(
            secret=self._secret,
            payload=payload,
            header=signature_header,
            tolerance_s=self._tolerance_s,
        )
        event = parse_event(payload)
        event_id = event["id"]
        event_type = event["type"]
        duplicate = WebhookResult(
            event_id=event_id, event_type=event_type, duplicate=True, handled=False
        )

        audit_entries: list[AuditEntry] = []
        handled = False
        # Check, dispatch and mark share one session and one transaction.
        async with self._session_factory() as session:
            if await self._guard.is_processed(session, provider=self._provider, event_id=event_id):
                logger.info("webhook_duplicate provider=%s event_id=%s", self._provider, event_id)
                return duplicate
            try:
                await self._guard.claim(
                    session,
                    provider=self._provider,
                    event_id=event_id,
                    event_type=event_type,
                    payload=event,
                )
                # Re-read under lock: a concurrent delivery may have finished while we waited.
                if await self._guard.is_processed(
                    session, provider=self._provider, event_id=event_id, lock=True
                ):
                    await session.rollback()
                    logger.info(
                        "webhook_duplicate provider=%s event_id=%s", self._provider, event_id
                    )
                    return duplicate
                handler = self._handlers.get(event_type)
                if handler is None:
                    logger.info(
                        "webhook_event_ignored provider=%s event_id=%s type=%s",
                        self._provider,
                        event_id,
                        event_type,
                    )
                else:
                    audit_entries = await handler(session, event)
                    handled = True
                await self._guard.mark_processed(
                    session,
                    provider=self._provider,
                    event_id=event_id,
                    event_type=event_type,
                    payload=event,
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # The unique key only proves a duplicate if the other delivery finished.
                if await self._guard.is_processed(
                    session, provider=self._provider, event_id=event_id
                ):
                    logger.info(
                        "webhook_duplicate_conflict provider=%s event_id=%s",
                        self._provider,
                        event_id,
                    )
                    return duplicate
                raise

        logger.info(
            "webhook_processed provider=%s event_id=%s type=%s handled=%s",
            self._provider,
            event_id,
            event_type,
            handled,
        )
        for entry in audit_entries:
            await self._audit.record_shared_event(entry)
        return WebhookResult(
            event_id=event_id, event_type=event_type, duplicate=False, handled=handled
        )

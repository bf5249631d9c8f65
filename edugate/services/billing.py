from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.domain.enums import EntityType, InvoiceStatus, PaymentStatus, TenantStatus
from edugate.domain.models import Invoice, Payment
from edugate.persistence.repos import tenants as tenants_repo
from edugate.services.audit import AuditEntry


logger = logging.getLogger(__name__)

WebhookHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[list[AuditEntry]]]

# Provider subscription states mapped onto tenant lifecycle states.
_SUBSCRIPTION_TENANT_STATUS: dict[str, TenantStatus] = {
    "active": TenantStatus.ACTIVE,
    "trialing": TenantStatus.ACTIVE,
    "past_due": TenantStatus.SUSPENDED,
    "unpaid": TenantStatus.SUSPENDED,
    "paused": TenantStatus.SUSPENDED,
    "canceled": TenantStatus.CANCELLED,
    "incomplete_expired": TenantStatus.EXPIRED,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _metadata_tenant(obj: dict[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    tenant_id = metadata.get("tenant_id") if isinstance(metadata, dict) else None
    return str(tenant_id) if tenant_id else None


def _amount(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _invoice_object(event: dict[str, Any]) -> dict[str, Any] | None:
    # Invoice events must name both the provider invoice and the owning school.
    obj = _event_object(event)
    if not obj.get("id") or _metadata_tenant(obj) is None:
        logger.warning(
            "invoice_event_ignored event_id=%s type=%s invoice_id=%s tenant_id=%s",
            event.get("id"),
            event.get("type"),
            obj.get("id"),
            _metadata_tenant(obj),
        )
        return None
    return obj


async def _get_or_create_invoice(session: AsyncSession, obj: dict[str, Any]) -> Invoice:
    provider_invoice_id = str(obj["id"])
    result = await session.execute(
        select(Invoice).where(Invoice.provider_invoice_id == provider_invoice_id)
    )
    invoice = result.scalar_one_or_none()
    if invoice is not None:
        return invoice
    invoice = Invoice(
        id=str(uuid4()),
        tenant_id=_metadata_tenant(obj),
        provider_invoice_id=provider_invoice_id,
        status=InvoiceStatus.OPEN,
        currency=str(obj.get("currency") or "usd"),
        amount_due=_amount(obj.get("amount_due")),
        amount_paid=0,
    )
    session.add(invoice)
    await session.flush()
    return invoice


async def handle_invoice_paid(session: AsyncSession, event: dict[str, Any]) -> list[AuditEntry]:
    # Mark the invoice paid and append the payment it settled.
    obj = _invoice_object(event)
    if obj is None:
        return []
    invoice = await _get_or_create_invoice(session, obj)
    amount_paid = _amount(obj.get("amount_paid"))
    invoice.status = InvoiceStatus.PAID
    invoice.amount_paid = amount_paid
    invoice.paid_at = _utc_now()
    session.add(
        Payment(
            invoice_id=invoice.id,
            tenant_id=invoice.tenant_id,
            provider_payment_id=obj.get("charge") or obj.get("payment_intent"),
            amount=amount_paid,
            currency=invoice.currency,
            status=PaymentStatus.SUCCEEDED,
        )
    )
    await session.flush()
    return [
        AuditEntry(
            action="INVOICE_PAID",
            entity_type=EntityType.INVOICE,
            entity_id=invoice.id,
            tenant_id=invoice.tenant_id,
            target=invoice.provider_invoice_id,
            details={"event_id": event.get("id"), "amount_paid": amount_paid},
        )
    ]


async def handle_invoice_payment_failed(
    session: AsyncSession, event: dict[str, Any]
) -> list[AuditEntry]:
    obj = _invoice_object(event)
    if obj is None:
        return []
    invoice = await _get_or_create_invoice(session, obj)
    invoice.status = InvoiceStatus.PAYMENT_FAILED
    await session.flush()
    return [
        AuditEntry(
            action="INVOICE_PAYMENT_FAILED",
            entity_type=EntityType.INVOICE,
            entity_id=invoice.id,
            tenant_id=invoice.tenant_id,
            target=invoice.provider_invoice_id,
            details={"event_id": event.get("id"), "attempt_count": obj.get("attempt_count")},
        )
    ]


async def handle_charge_refunded(session: AsyncSession, event: dict[str, Any]) -> list[AuditEntry]:
    obj = _event_object(event)
    charge_id = obj.get("id")
    if not charge_id:
        return []
    result = await session.execute(
        update(Payment)
        .where(Payment.provider_payment_id == charge_id)
        .values(status=PaymentStatus.REFUNDED)
        .execution_options(synchronize_session=False)
    )
    refunded = result.rowcount or 0
    if not refunded:
        logger.info("payment_refund_unmatched charge_id=%s", charge_id)
        return []
    return [
        AuditEntry(
            action="PAYMENT_REFUNDED",
            entity_type=EntityType.INVOICE,
            entity_id=str(charge_id),
            tenant_id=_metadata_tenant(obj),
            details={
                "event_id": event.get("id"),
                "amount_refunded": _amount(obj.get("amount_refunded")),
            },
        )
    ]


async def _apply_subscription_status(
    session: AsyncSession,
    event: dict[str, Any],
    status: TenantStatus | None,
) -> list[AuditEntry]:
    obj = _event_object(event)
    tenant_id = _metadata_tenant(obj)
    if tenant_id is None or status is None:
        logger.info(
            "subscription_event_ignored event_id=%s tenant_id=%s status=%s",
            event.get("id"),
            tenant_id,
            obj.get("status"),
        )
        return []
    changed = await tenants_repo.set_tenant_status(session, tenant_id, status)
    if not changed:
        logger.warning("subscription_tenant_missing tenant_id=%s", tenant_id)
        return []
    return [
        AuditEntry(
            action="SUBSCRIPTION_STATUS_CHANGED",
            entity_type=EntityType.SUBSCRIPTION,
            entity_id=str(obj.get("id") or ""),
            tenant_id=tenant_id,
            target=tenant_id,
            details={
                "event_id": event.get("id"),
                "subscription_status": obj.get("status"),
                "tenant_status": str(status),
            },
        )
    ]


async def handle_subscription_updated(
    session: AsyncSession, event: dict[str, Any]
) -> list[AuditEntry]:
    status = _SUBSCRIPTION_TENANT_STATUS.get(str(_event_object(event).get("status") or ""))
    return await _apply_subscription_status(session, event, status)


async def handle_subscription_deleted(
    session: AsyncSession, event: dict[str, Any]
) -> list[AuditEntry]:
    return await _apply_subscription_status(session, event, TenantStatus.CANCELLED)


async def handle_payment_intent(session: AsyncSession, event: dict[str, Any]) -> list[AuditEntry]:
    # Invoice events carry the state change; intents are only recorded.
    obj = _event_object(event)
    logger.info(
        "payment_intent_received event_id=%s type=%s intent_id=%s status=%s",
        event.get("id"),
        event.get("type"),
        obj.get("id"),
        obj.get("status"),
    )
    return []


def default_handlers() -> dict[str, WebhookHandler]:
    return {
        "invoice.paid": handle_invoice_paid,
        "invoice.payment_failed": handle_invoice_payment_failed,
        "charge.refunded": handle_charge_refunded,
        "customer.subscription.updated": handle_subscription_updated,
        "customer.subscription.deleted": handle_subscription_deleted,
        "payment_intent.succeeded": handle_payment_intent,
        "payment_intent.payment_failed": handle_payment_intent,
    }

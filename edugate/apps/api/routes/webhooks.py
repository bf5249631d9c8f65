from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from edugate.apps.api.deps import get_webhook_processor
from edugate.apps.api.response import success_response
from edugate.services.webhooks import WebhookProcessor


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments")
async def receive_payment_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> dict:
    # The signature covers the exact bytes received, so read the raw body.
    payload = await request.body()
    header_name = request.app.state.settings.payment_webhook_signature_header
    result = await processor.process(payload, request.headers.get(header_name))
    return success_response(request=request, data=result.as_response())

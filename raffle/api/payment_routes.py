"""
PIX payment routes.

POST /payments/pix:
    reservation active|pending_payment -> pending_payment, then a PIX charge
    is created and linked.  404 / 403 / 409 for missing, foreign or finished
    reservations; 503 when the provider is down (the reservation goes back
    to active).

GET /payments/{payment_id}/status:
    Re-reads the provider and applies the same transition as the webhook.

POST /payments/webhook:
    Always 200.  Processing failures are logged; the next status poll
    re-derives the same idempotent transition.
"""
from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Depends, Header, Request

from raffle.api.deps import get_bridge, get_current_user
from raffle.core.payments import PaymentBridge
from raffle.shared.schemas import (
    PaymentStatusResponse,
    PixPaymentRequest,
    PixPaymentResponse,
    WebhookNotification,
)
from raffle.shared.security import Identity

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["payments"])


@router.post(
    "/payments/pix",
    response_model=PixPaymentResponse,
    summary="Create a PIX charge for a reservation",
)
async def create_pix_payment(
    body: PixPaymentRequest,
    idempotency_key: str | None = Header(default=None, alias="X-Idempotency-Key"),
    identity: Identity = Depends(get_current_user),
    bridge: PaymentBridge = Depends(get_bridge),
) -> PixPaymentResponse:
    charge = await bridge.start_pix_payment(body.reservationId, identity, idempotency_key)
    return PixPaymentResponse(
        id=charge.payment_id,
        status=charge.status,
        qr_code=charge.qr_code,
        qr_code_base64=charge.qr_code_base64,
        expires_in=charge.expires_in,
    )


@router.get(
    "/payments/{payment_id}/status",
    response_model=PaymentStatusResponse,
    summary="Refresh payment status from the provider",
)
async def payment_status(
    payment_id: str,
    identity: Identity = Depends(get_current_user),
    bridge: PaymentBridge = Depends(get_bridge),
) -> PaymentStatusResponse:
    charge = await bridge.refresh_payment(payment_id, identity.id)
    return PaymentStatusResponse(
        paymentId=charge.payment_id,
        status=charge.status,
        status_detail=charge.status_detail,
    )


def _notification_payment_id(request: Request, raw: bytes) -> str | None:
    """Pull the payment id out of either notification flavour.

    Webhooks post ``{"type": "payment", "data": {"id": ...}}``; IPN calls
    use ``?topic=payment&id=...``.  Other topics are ignored.
    """
    params = request.query_params
    topic = params.get("topic") or params.get("type")
    payment_id = params.get("data.id") or params.get("id")

    if raw:
        try:
            note = WebhookNotification.model_validate(json.loads(raw))
        except ValueError:
            note = None
        if note is not None:
            topic = note.type or topic
            if note.data and note.data.get("id") is not None:
                payment_id = str(note.data["id"])

    if topic not in (None, "payment"):
        return None
    return payment_id


@router.post("/payments/webhook", summary="Provider notification")
async def payment_webhook(
    request: Request,
    bridge: PaymentBridge = Depends(get_bridge),
) -> dict:
    raw = await request.body()
    payment_id = _notification_payment_id(request, raw)
    if not payment_id:
        logger.info("webhook_ignored", query=str(request.query_params))
        return {"received": True}

    try:
        outcome = await bridge.handle_notification(payment_id)
        logger.info("webhook_processed", payment_id=payment_id, reservation_status=outcome)
    except Exception as exc:
        logger.error("webhook_processing_failed", payment_id=payment_id, error=str(exc))
    return {"received": True}

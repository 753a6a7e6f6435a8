"""
Mercado Pago PIX client.

- create_pix_payment() – POST /v1/payments with payment_method_id=pix
- get_payment()        – GET /v1/payments/{id}, retried on transport errors

Creating a charge is never retried.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from raffle.shared.errors import PaymentProviderError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.mercadopago.com"
READ_ATTEMPTS = 3


@dataclass
class PixCharge:
    """Provider view of a PIX payment."""

    payment_id: str
    status: str
    status_detail: str | None = None
    qr_code: str | None = None
    qr_code_base64: str | None = None
    expires_in: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def _parse_charge(body: dict[str, Any], default_expires_in: int | None) -> PixCharge:
    td = (body.get("point_of_interaction") or {}).get("transaction_data") or {}
    qr_base64 = td.get("qr_code_base64")
    if qr_base64:
        qr_base64 = "".join(qr_base64.split())
    expires_in = td.get("expires_in")
    return PixCharge(
        payment_id=str(body["id"]),
        status=str(body.get("status", "pending")),
        status_detail=body.get("status_detail"),
        qr_code=td.get("qr_code"),
        qr_code_base64=qr_base64,
        expires_in=int(expires_in) if expires_in is not None else default_expires_in,
        raw=body,
    )


class MercadoPagoClient:
    """Thin async wrapper over the Mercado Pago payments API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 8.0,
        default_expires_in: int = 30 * 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._default_expires_in = default_expires_in
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_pix_payment(
        self,
        amount_cents: int,
        description: str,
        reservation_id: str,
        payer: dict[str, Any],
        idempotency_key: str,
    ) -> PixCharge:
        """Create a PIX charge and return the QR data for the client."""
        body = {
            "transaction_amount": round(amount_cents / 100, 2),
            "description": description,
            "payment_method_id": "pix",
            "external_reference": reservation_id,
            "payer": {k: v for k, v in payer.items() if v},
        }
        try:
            response = await self._client.post(
                "/v1/payments",
                json=body,
                headers={"X-Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as exc:
            logger.error("pix_create_transport_error", reservation_id=reservation_id, error=str(exc))
            raise PaymentProviderError() from exc

        if response.status_code >= 400:
            logger.error(
                "pix_create_rejected",
                reservation_id=reservation_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentProviderError(
                "Payment provider rejected the charge", provider_status=response.status_code
            )

        charge = _parse_charge(response.json(), self._default_expires_in)
        logger.info(
            "pix_charge_created",
            reservation_id=reservation_id,
            payment_id=charge.payment_id,
            status=charge.status,
        )
        return charge

    async def get_payment(self, payment_id: str) -> PixCharge:
        """Fetch current payment status; read-only, so transport errors retry."""
        interval = 0.2
        last_exc: Exception | None = None
        for attempt in range(1, READ_ATTEMPTS + 1):
            try:
                response = await self._client.get(f"/v1/payments/{payment_id}")
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "pix_status_retry", payment_id=payment_id, attempt=attempt, error=str(exc)
                )
                if attempt < READ_ATTEMPTS:
                    await asyncio.sleep(interval)
                    interval = min(interval * 2, 2.0)
                continue

            if response.status_code >= 400:
                logger.error(
                    "pix_status_failed",
                    payment_id=payment_id,
                    status_code=response.status_code,
                )
                raise PaymentProviderError(
                    "Payment provider lookup failed", provider_status=response.status_code
                )
            return _parse_charge(response.json(), None)

        raise PaymentProviderError() from last_exc

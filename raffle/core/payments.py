"""
Payment bridge.

Turns provider payment statuses into reservation transitions:

    approved                      -> reservation paid, its slots sold, rollover check
    rejected / cancelled          -> reservation cancelled, slots released
    expired                       -> reservation expired, slots released
    anything else (pending, ...)  -> payment record updated only

Each transition is a conditional write, so redelivered webhooks and
repeated status polls converge on the same state.  ``paid`` is terminal:
a failure status arriving after approval changes nothing.
"""
from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.reservations import (
    ReservationManager,
    release_slots,
    transition_reservation,
)
from raffle.core.rollover import roll_over_if_sold_out
from raffle.providers.mercadopago import PixCharge
from raffle.shared.errors import NotReservationOwner, PaymentNotFound, PaymentProviderError
from raffle.shared.metrics import PAYMENT_UPDATES
from raffle.shared.models import HOLDING_STATUSES, Payment, Reservation, Slot
from raffle.shared.security import Identity

logger = structlog.get_logger(__name__)

APPROVED = "approved"
# Provider failure status -> reservation status it leads to.
FAILURE_OUTCOMES: dict[str, str] = {
    "rejected": "cancelled",
    "cancelled": "cancelled",
    "expired": "expired",
}


class PaymentBridge:
    """Applies payment outcomes to reservations and their slots."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        manager: ReservationManager,
        gateway,
    ) -> None:
        self._sessions = sessions
        self._manager = manager
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def on_payment_update(
        self,
        payment_id: str,
        status: str,
        status_detail: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> str | None:
        """Apply a provider status to the linked reservation.

        Returns the reservation status afterwards, or ``None`` when the
        payment is unknown.
        """
        new_draw_id: int | None = None
        async with self._sessions() as session:
            async with session.begin():
                payment = await session.get(Payment, payment_id)
                if payment is None:
                    logger.warning("payment_update_unknown_payment", payment_id=payment_id)
                    return None

                values: dict[str, Any] = {"status": status, "status_detail": status_detail}
                if payload is not None:
                    values["payload"] = payload
                await session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )

                reservation = await session.get(Reservation, payment.reservation_id)
                if status == APPROVED:
                    new_draw_id = await self._apply_approval(session, reservation, payment_id)
                elif status in FAILURE_OUTCOMES:
                    await self._apply_failure(session, reservation, payment_id, status)

                await session.refresh(reservation)
                outcome = reservation.status

        PAYMENT_UPDATES.labels(status=status).inc()
        logger.info(
            "payment_update_applied",
            payment_id=payment_id,
            status=status,
            reservation_id=str(reservation.id),
            reservation_status=outcome,
            new_draw_id=new_draw_id,
        )
        return outcome

    async def _apply_approval(
        self, session: AsyncSession, reservation: Reservation, payment_id: str
    ) -> int | None:
        # The approving charge becomes the reservation's payment of record.
        paid = await transition_reservation(
            session, reservation.id, HOLDING_STATUSES, "paid", payment_id=payment_id
        )
        if not paid:
            if reservation.status == "paid" and reservation.payment_id != payment_id:
                # A second charge for the same reservation was paid; needs a refund.
                logger.warning(
                    "duplicate_payment_approval",
                    payment_id=payment_id,
                    paid_payment_id=reservation.payment_id,
                    reservation_id=str(reservation.id),
                )
            elif reservation.status == "paid":
                logger.info("payment_approval_replayed", payment_id=payment_id)
            else:
                # Money arrived after the reservation was released; needs a refund.
                logger.warning(
                    "late_payment_approval",
                    payment_id=payment_id,
                    reservation_id=str(reservation.id),
                    reservation_status=reservation.status,
                )
            return None

        # Sell only slots still held by this reservation.
        result = await session.execute(
            update(Slot)
            .where(
                Slot.draw_id == reservation.draw_id,
                Slot.number.in_(reservation.numbers),
                Slot.status == "reserved",
                Slot.reservation_id == reservation.id,
            )
            .values(status="sold", reservation_id=None)
            .execution_options(synchronize_session=False)
        )
        sold = result.rowcount
        if sold != len(reservation.numbers):
            logger.warning(
                "payment_approval_inventory_mismatch",
                reservation_id=str(reservation.id),
                expected=len(reservation.numbers),
                sold=sold,
            )
        if not sold:
            return None
        return await roll_over_if_sold_out(
            session, reservation.draw_id, self._manager.draw_size
        )

    async def _apply_failure(
        self,
        session: AsyncSession,
        reservation: Reservation,
        payment_id: str,
        status: str,
    ) -> None:
        # Only the reservation's current charge may fail it.
        failed = await transition_reservation(
            session,
            reservation.id,
            HOLDING_STATUSES,
            FAILURE_OUTCOMES[status],
            Reservation.payment_id == payment_id,
        )
        if not failed:
            logger.info(
                "payment_failure_ignored",
                payment_id=payment_id,
                reservation_status=reservation.status,
            )
            return
        released = await release_slots(
            session, reservation.id, reservation.draw_id, reservation.numbers
        )
        logger.info(
            "payment_failure_released",
            payment_id=payment_id,
            reservation_id=str(reservation.id),
            released=released,
        )

    # ------------------------------------------------------------------
    # Provider round-trips
    # ------------------------------------------------------------------

    async def start_pix_payment(
        self,
        reservation_id: uuid.UUID | str,
        identity: Identity,
        idempotency_key: str | None = None,
    ) -> PixCharge:
        """Create a PIX charge for the caller's reservation and link it."""
        reservation = await self._manager.begin_payment(reservation_id, identity.id)
        rid = reservation.id

        first_name, _, last_name = (identity.name or "").strip().partition(" ")
        try:
            charge = await self._gateway.create_pix_payment(
                amount_cents=reservation.amount_cents,
                description=f"Reserva {rid}",
                reservation_id=str(rid),
                payer={
                    "email": identity.email,
                    "first_name": first_name,
                    "last_name": last_name,
                },
                idempotency_key=idempotency_key or f"pix-{rid}-{uuid.uuid4().hex}",
            )
        except PaymentProviderError:
            await self._manager.abandon_payment(rid)
            raise

        async with self._sessions() as session:
            async with session.begin():
                payment = await session.get(Payment, charge.payment_id)
                if payment is None:
                    session.add(
                        Payment(
                            id=charge.payment_id,
                            reservation_id=rid,
                            status=charge.status,
                            status_detail=charge.status_detail,
                            amount_cents=reservation.amount_cents,
                            qr_code=charge.qr_code,
                            qr_code_base64=charge.qr_code_base64,
                            payload=charge.raw,
                        )
                    )
                else:
                    payment.status = charge.status
                    payment.status_detail = charge.status_detail
                    payment.payload = charge.raw
                await session.execute(
                    update(Reservation)
                    .where(Reservation.id == rid)
                    .values(payment_id=charge.payment_id)
                    .execution_options(synchronize_session=False)
                )

        logger.info(
            "pix_payment_started",
            reservation_id=str(rid),
            payment_id=charge.payment_id,
            amount_cents=reservation.amount_cents,
        )
        if charge.status == APPROVED or charge.status in FAILURE_OUTCOMES:
            await self.on_payment_update(
                charge.payment_id, charge.status, charge.status_detail, charge.raw
            )
        return charge

    async def refresh_payment(self, payment_id: str, user_id: int) -> PixCharge:
        """Poll the provider for the caller's payment and apply the result."""
        async with self._sessions() as session:
            payment = await session.get(Payment, payment_id)
            if payment is None:
                raise PaymentNotFound()
            reservation = await session.get(Reservation, payment.reservation_id)
            if reservation is None or reservation.user_id != user_id:
                raise NotReservationOwner()

        charge = await self._gateway.get_payment(payment_id)
        await self.on_payment_update(
            charge.payment_id, charge.status, charge.status_detail, charge.raw
        )
        return charge

    async def handle_notification(self, payment_id: str) -> str | None:
        """Webhook path: the pushed id is only a hint, the status is re-read."""
        charge = await self._gateway.get_payment(payment_id)
        return await self.on_payment_update(
            charge.payment_id, charge.status, charge.status_detail, charge.raw
        )

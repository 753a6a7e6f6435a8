"""
Reservation manager: the slot state machine.

    available --claim(reservation)--> reserved --payment approved--> sold
                                         |
                                         +--expiry / cancel / payment failed--> available

No in-process lock protects a claim.  Every transition is a conditional
UPDATE evaluated by the database at write time, and the affected-row count
decides who won:

- claim:   UPDATE slots SET status='reserved', reservation_id=:new
           WHERE draw_id=:d AND number IN (:ns) AND status='available'
           (must touch exactly len(ns) rows, otherwise roll back)
- release: UPDATE slots SET status='available', reservation_id=NULL
           WHERE draw_id=:d AND number IN (:ns) AND status='reserved'
             AND reservation_id=:r
           (a no-op for slots that have moved on)

Write paths are never retried here: a lost response after a committed claim
must not turn into a second claim.
"""
from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.rollover import get_open_draw
from raffle.shared.errors import (
    InvalidNumbers,
    NoNumbers,
    NoOpenDraw,
    NotReservationOwner,
    NumberUnavailable,
    ReservationNotFound,
    ReservationStatusConflict,
)
from raffle.shared.metrics import (
    RESERVATION_CONFLICTS,
    RESERVATIONS_CREATED,
    RESERVATIONS_EXPIRED,
)
from raffle.shared.models import HOLDING_STATUSES, Reservation, Slot

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReservationHandle:
    """What a successful reservation returns to the caller."""

    reservation_id: uuid.UUID
    draw_id: int
    numbers: list[int]
    expires_at: datetime
    amount_cents: int


def as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    """Parse a reservation id; malformed ids cannot name a reservation."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ReservationNotFound() from None


async def release_slots(
    session: AsyncSession,
    reservation_id: uuid.UUID,
    draw_id: int,
    numbers: Iterable[int],
) -> int:
    """Return the reservation's slots to ``available``.

    Only slots that are still ``reserved`` under ``reservation_id`` move;
    returns how many did.
    """
    result = await session.execute(
        update(Slot)
        .where(
            Slot.draw_id == draw_id,
            Slot.number.in_(list(numbers)),
            Slot.status == "reserved",
            Slot.reservation_id == reservation_id,
        )
        .values(status="available", reservation_id=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def transition_reservation(
    session: AsyncSession,
    reservation_id: uuid.UUID,
    from_statuses: Iterable[str],
    to_status: str,
    *conditions,
    **values,
) -> bool:
    """Conditionally move a reservation between statuses.

    Returns True only for the caller whose UPDATE matched the row.
    """
    result = await session.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation_id,
            Reservation.status.in_(list(from_statuses)),
            *conditions,
        )
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class ReservationManager:
    """Claims, expires and cancels reservations against the slot inventory."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        ttl: timedelta = timedelta(minutes=15),
        draw_size: int = 100,
        price_cents: int = 5500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self.ttl = ttl
        self.draw_size = draw_size
        self.price_cents = price_cents
        self._clock = clock

    # ------------------------------------------------------------------
    # Reserve
    # ------------------------------------------------------------------

    async def reserve_numbers(self, user_id: int, numbers: Iterable[int]) -> ReservationHandle:
        """Claim every requested number in the open draw, or none of them."""
        await self.expire_stale()

        requested = sorted(set(numbers))
        if not requested:
            RESERVATION_CONFLICTS.labels(reason="no_numbers").inc()
            raise NoNumbers()
        out_of_range = [n for n in requested if not 0 <= n < self.draw_size]
        if out_of_range:
            RESERVATION_CONFLICTS.labels(reason="invalid_numbers").inc()
            raise InvalidNumbers(out_of_range)

        async with self._sessions() as session:
            async with session.begin():
                draw = await get_open_draw(session)
                if draw is None:
                    RESERVATION_CONFLICTS.labels(reason="no_open_draw").inc()
                    raise NoOpenDraw()

                # Fast rejection only; the claim below is what arbitrates.
                await self._check_available(session, draw.id, requested)

                reservation_id = uuid.uuid4()
                expires_at = self._clock() + self.ttl
                amount_cents = len(requested) * self.price_cents
                session.add(
                    Reservation(
                        id=reservation_id,
                        user_id=user_id,
                        draw_id=draw.id,
                        numbers=requested,
                        status="active",
                        amount_cents=amount_cents,
                        expires_at=expires_at,
                    )
                )
                await session.flush()

                claimed = await self._claim(session, draw.id, requested, reservation_id)
                if claimed != len(requested):
                    lost = await self._first_foreign_number(
                        session, draw.id, requested, reservation_id
                    )
                    RESERVATION_CONFLICTS.labels(reason="claim_lost").inc()
                    logger.info(
                        "reservation_claim_lost",
                        draw_id=draw.id,
                        requested=requested,
                        claimed=claimed,
                        n=lost,
                    )
                    # Leaving the block rolls back the partial claim and the row.
                    raise NumberUnavailable(lost)

        RESERVATIONS_CREATED.inc()
        logger.info(
            "reservation_created",
            reservation_id=str(reservation_id),
            user_id=user_id,
            draw_id=draw.id,
            numbers=requested,
            expires_at=expires_at.isoformat(),
        )
        return ReservationHandle(
            reservation_id=reservation_id,
            draw_id=draw.id,
            numbers=requested,
            expires_at=expires_at,
            amount_cents=amount_cents,
        )

    async def _check_available(
        self, session: AsyncSession, draw_id: int, numbers: list[int]
    ) -> None:
        result = await session.execute(
            select(Slot.number, Slot.status)
            .where(Slot.draw_id == draw_id, Slot.number.in_(numbers))
            .order_by(Slot.number)
        )
        for number, status in result.all():
            if status != "available":
                RESERVATION_CONFLICTS.labels(reason="unavailable").inc()
                logger.info("reservation_conflict", draw_id=draw_id, n=number, status=status)
                raise NumberUnavailable(number)

    async def _claim(
        self,
        session: AsyncSession,
        draw_id: int,
        numbers: list[int],
        reservation_id: uuid.UUID,
    ) -> int:
        result = await session.execute(
            update(Slot)
            .where(
                Slot.draw_id == draw_id,
                Slot.number.in_(numbers),
                Slot.status == "available",
            )
            .values(status="reserved", reservation_id=reservation_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _first_foreign_number(
        self,
        session: AsyncSession,
        draw_id: int,
        numbers: list[int],
        reservation_id: uuid.UUID,
    ) -> int:
        """Smallest requested number this attempt failed to claim."""
        result = await session.execute(
            select(Slot.number).where(
                Slot.draw_id == draw_id,
                Slot.number.in_(numbers),
                Slot.reservation_id == reservation_id,
            )
        )
        mine = set(result.scalars().all())
        return min(n for n in numbers if n not in mine)

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def expire_stale(self) -> int:
        """Expire every ``active`` reservation past its deadline.

        Safe to run concurrently: each reservation is flipped by a
        conditional update and only the caller that flipped it releases the
        slots.  Returns how many reservations this call expired.
        """
        now = self._clock()
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    select(Reservation.id, Reservation.draw_id, Reservation.numbers).where(
                        Reservation.status == "active",
                        Reservation.expires_at < now,
                    )
                )
                stale = result.all()
                expired = 0
                for reservation_id, draw_id, numbers in stale:
                    flipped = await transition_reservation(
                        session,
                        reservation_id,
                        ["active"],
                        "expired",
                        Reservation.expires_at < now,
                    )
                    if not flipped:
                        continue
                    released = await release_slots(session, reservation_id, draw_id, numbers)
                    expired += 1
                    logger.info(
                        "reservation_expired",
                        reservation_id=str(reservation_id),
                        draw_id=draw_id,
                        released=released,
                    )

        if expired:
            RESERVATIONS_EXPIRED.inc(expired)
        return expired

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel_reservation(
        self, reservation_id: uuid.UUID | str, user_id: int | None = None
    ) -> str:
        """Release the reservation's numbers and mark it ``cancelled``.

        A paid (or otherwise finished) reservation is left as is.  Returns
        the reservation's status after the call.
        """
        rid = as_uuid(reservation_id)
        async with self._sessions() as session:
            async with session.begin():
                reservation = await session.get(Reservation, rid)
                if reservation is None:
                    raise ReservationNotFound()
                if user_id is not None and reservation.user_id != user_id:
                    raise NotReservationOwner()
                if reservation.status not in HOLDING_STATUSES:
                    return reservation.status

                cancelled = await transition_reservation(
                    session, rid, HOLDING_STATUSES, "cancelled"
                )
                if not cancelled:
                    await session.refresh(reservation)
                    return reservation.status
                released = await release_slots(
                    session, rid, reservation.draw_id, reservation.numbers
                )

        logger.info("reservation_cancelled", reservation_id=str(rid), released=released)
        return "cancelled"

    # ------------------------------------------------------------------
    # Payment initiation
    # ------------------------------------------------------------------

    async def begin_payment(self, reservation_id: uuid.UUID | str, user_id: int) -> Reservation:
        """Move a reservation into ``pending_payment`` ahead of a PIX charge.

        Runs the sweep first so a reservation past its deadline cannot start
        paying.  Raises 404/403/409 errors for missing, foreign or finished
        reservations.
        """
        await self.expire_stale()
        rid = as_uuid(reservation_id)
        async with self._sessions() as session:
            async with session.begin():
                reservation = await session.get(Reservation, rid)
                if reservation is None:
                    raise ReservationNotFound()
                if reservation.user_id != user_id:
                    raise NotReservationOwner()
                moved = await transition_reservation(
                    session, rid, HOLDING_STATUSES, "pending_payment"
                )
                if not moved:
                    await session.refresh(reservation)
                    raise ReservationStatusConflict(reservation.status)
                await session.refresh(reservation)
        return reservation

    async def abandon_payment(self, reservation_id: uuid.UUID) -> bool:
        """Undo ``begin_payment`` when no charge was ever linked."""
        async with self._sessions() as session:
            async with session.begin():
                reverted = await transition_reservation(
                    session,
                    reservation_id,
                    ["pending_payment"],
                    "active",
                    Reservation.payment_id.is_(None),
                )
        if reverted:
            logger.info("payment_start_abandoned", reservation_id=str(reservation_id))
        return reverted

"""
Inventory and reservation routes.

POST /reservations:
    Sweep expired reservations, then claim every requested number of the
    open draw in one conditional write.  All or nothing:
      200 {reservationId, drawId, expiresAt, ...}
      400 no_numbers | invalid_numbers | no_open_draw
      409 {error: "unavailable", n}

GET /numbers, GET /draws/{id}/numbers:
    Slot states for the open (or given) draw.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.api.deps import get_current_user, get_manager
from raffle.core.reservations import ReservationManager
from raffle.core.rollover import get_open_draw
from raffle.shared.database import get_db
from raffle.shared.models import Draw, Reservation, Slot
from raffle.shared.schemas import (
    DrawResponse,
    MyReservationsResponse,
    NumbersResponse,
    NumberState,
    ReservationRequest,
    ReservationResponse,
    ReservationSummary,
)
from raffle.shared.security import Identity

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["reservations"])


async def _numbers_for(db: AsyncSession, draw_id: int) -> list[NumberState]:
    result = await db.execute(
        select(Slot.number, Slot.status).where(Slot.draw_id == draw_id).order_by(Slot.number)
    )
    return [NumberState(n=n, status=status) for n, status in result.all()]


@router.get("/numbers", response_model=NumbersResponse, summary="Numbers of the open draw")
async def list_numbers(db: AsyncSession = Depends(get_db)) -> NumbersResponse:
    draw = await get_open_draw(db)
    if draw is None:
        return NumbersResponse(drawId=None, numbers=[])
    return NumbersResponse(drawId=draw.id, numbers=await _numbers_for(db, draw.id))


@router.get("/draws/current", response_model=DrawResponse | None, summary="Open draw")
async def current_draw(db: AsyncSession = Depends(get_db)) -> DrawResponse | None:
    draw = await get_open_draw(db)
    if draw is None:
        return None
    return DrawResponse.model_validate(draw)


@router.get(
    "/draws/{draw_id}/numbers",
    response_model=NumbersResponse,
    summary="Numbers of a given draw",
)
async def draw_numbers(draw_id: int, db: AsyncSession = Depends(get_db)) -> NumbersResponse:
    draw = await db.get(Draw, draw_id)
    if draw is None:
        return NumbersResponse(drawId=None, numbers=[])
    return NumbersResponse(drawId=draw.id, numbers=await _numbers_for(db, draw.id))


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    summary="Reserve numbers in the open draw",
)
async def create_reservation(
    body: ReservationRequest,
    identity: Identity = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager),
) -> ReservationResponse:
    handle = await manager.reserve_numbers(identity.id, body.numbers)
    return ReservationResponse(
        reservationId=str(handle.reservation_id),
        drawId=handle.draw_id,
        expiresAt=handle.expires_at,
        numbers=handle.numbers,
        amountCents=handle.amount_cents,
    )


@router.delete("/reservations/{reservation_id}", summary="Cancel own reservation")
async def cancel_reservation(
    reservation_id: str,
    identity: Identity = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager),
) -> dict:
    status = await manager.cancel_reservation(reservation_id, identity.id)
    return {"reservationId": reservation_id, "status": status}


@router.get(
    "/me/reservations",
    response_model=MyReservationsResponse,
    summary="Caller's reservations",
)
async def my_reservations(
    identity: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MyReservationsResponse:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.user_id == identity.id)
        .order_by(Reservation.created_at.desc())
    )
    return MyReservationsResponse(
        reservations=[
            ReservationSummary(
                id=str(r.id),
                draw_id=r.draw_id,
                numbers=r.numbers,
                amount_cents=r.amount_cents,
                status=r.status,
                created_at=r.created_at,
                expires_at=r.expires_at,
            )
            for r in result.scalars().all()
        ]
    )


@router.get("/health", summary="Health check")
async def health() -> dict:
    """Return service liveness status."""
    return {"status": "ok", "service": "raffle"}

"""Admin reservation listing."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.api.deps import require_admin
from raffle.shared.database import get_db
from raffle.shared.models import Reservation, User
from raffle.shared.schemas import AdminReservationsResponse, ReservationSummary
from raffle.shared.security import Identity

router = APIRouter(prefix="/admin", tags=["admin"])

MAX_PAGE_SIZE = 200


@router.get(
    "/reservations",
    response_model=AdminReservationsResponse,
    summary="List reservations across users",
)
async def list_reservations(
    status: str | None = None,
    page: int = 1,
    page_size: int = Query(default=50, alias="pageSize"),
    _admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminReservationsResponse:
    page = max(1, page)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))

    filters = [Reservation.status == status] if status else []
    total = await db.scalar(select(func.count()).select_from(Reservation).where(*filters))

    result = await db.execute(
        select(Reservation, User.email)
        .join(User, User.id == Reservation.user_id)
        .where(*filters)
        .order_by(Reservation.created_at.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    reservations = [
        ReservationSummary(
            id=str(r.id),
            user_id=r.user_id,
            email=email,
            draw_id=r.draw_id,
            numbers=r.numbers,
            amount_cents=r.amount_cents,
            status=r.status,
            created_at=r.created_at,
            expires_at=r.expires_at,
        )
        for r, email in result.all()
    ]
    return AdminReservationsResponse(reservations=reservations, total=total or 0)

"""
Draw rollover.

When every slot of the open draw is sold the draw is closed and a fresh one
is opened with a full available inventory.  Closing is a conditional write
on the draw row (``WHERE status = 'open'``); only the caller whose update
lands opens the successor, so concurrent triggers cannot create two open
draws.  The sold count is taken under a row lock on the draw, so two
approvals finishing the last slots cannot both count one short.
"""
from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.shared.metrics import DRAW_ROLLOVERS
from raffle.shared.models import Draw, Slot

logger = structlog.get_logger(__name__)


async def get_open_draw(session: AsyncSession) -> Draw | None:
    """Most recent open draw, if any."""
    result = await session.execute(
        select(Draw).where(Draw.status == "open").order_by(Draw.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def open_draw(session: AsyncSession, size: int) -> Draw:
    """Insert a new open draw with slots 0..size-1, all available."""
    draw = Draw(status="open", opened_at=datetime.now(timezone.utc))
    session.add(draw)
    await session.flush()
    await session.execute(
        insert(Slot),
        [
            {"draw_id": draw.id, "number": n, "status": "available", "reservation_id": None}
            for n in range(size)
        ],
    )
    logger.info("draw_opened", draw_id=draw.id, size=size)
    return draw


async def ensure_open_draw(session: AsyncSession, size: int) -> Draw:
    """Seed the inventory at startup.

    Opens a draw when none is open, and fills in any numbers missing from
    the open draw without touching slots that already exist.
    """
    draw = await get_open_draw(session)
    if draw is None:
        return await open_draw(session, size)

    result = await session.execute(select(Slot.number).where(Slot.draw_id == draw.id))
    present = set(result.scalars().all())
    missing = [n for n in range(size) if n not in present]
    if missing:
        await session.execute(
            insert(Slot),
            [
                {"draw_id": draw.id, "number": n, "status": "available", "reservation_id": None}
                for n in missing
            ],
        )
        logger.info("draw_inventory_topped_up", draw_id=draw.id, added=len(missing))
    return draw


async def roll_over_if_sold_out(
    session: AsyncSession, draw_id: int, size: int
) -> int | None:
    """Close ``draw_id`` and open its successor once all slots are sold.

    Returns the new draw id, or ``None`` when the draw is not sold out or
    another caller already closed it.
    """
    # Serialises concurrent last sales so the second count sees the first.
    await session.execute(select(Draw.id).where(Draw.id == draw_id).with_for_update())
    sold = await session.scalar(
        select(func.count())
        .select_from(Slot)
        .where(Slot.draw_id == draw_id, Slot.status == "sold")
    )
    total = await session.scalar(
        select(func.count()).select_from(Slot).where(Slot.draw_id == draw_id)
    )
    if not total or sold < total:
        return None

    closed = await session.execute(
        update(Draw)
        .where(Draw.id == draw_id, Draw.status == "open")
        .values(status="closed", closed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount != 1:
        logger.info("draw_rollover_skipped", draw_id=draw_id, reason="already_closed")
        return None

    successor = await open_draw(session, size)
    DRAW_ROLLOVERS.inc()
    logger.info("draw_rolled_over", closed_draw_id=draw_id, new_draw_id=successor.id)
    return successor.id

"""
Periodic expiry sweep.

Reservations are also swept lazily before every claim; this loop bounds how
long an expired reservation can keep its numbers when nobody is reserving.
"""
from __future__ import annotations

import asyncio

import structlog

from raffle.core.reservations import ReservationManager

logger = structlog.get_logger(__name__)


async def start_sweeper(manager: ReservationManager, interval: float = 60.0) -> None:
    """Run the expiry sweep every ``interval`` seconds until cancelled."""
    logger.info("sweeper_started", interval=interval)
    while True:
        try:
            count = await manager.expire_stale()
            if count:
                logger.info("sweeper_expired", count=count)
        except asyncio.CancelledError:
            logger.info("sweeper_cancelled")
            break
        except Exception as exc:
            logger.error("sweeper_error", error=str(exc))

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("sweeper_cancelled")
            break

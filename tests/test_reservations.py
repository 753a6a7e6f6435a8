"""Reservation manager: claims, expiry sweep and cancellation."""
from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select, update

from raffle.core.reservations import ReservationHandle, ReservationManager
from raffle.shared.errors import (
    InvalidNumbers,
    NoNumbers,
    NoOpenDraw,
    NotReservationOwner,
    NumberUnavailable,
    ReservationNotFound,
)
from raffle.shared.models import Draw, Reservation, Slot
from tests.conftest import slot_states


async def _reservation(db, reservation_id) -> Reservation:
    async with db.sessions() as session:
        return await session.get(Reservation, reservation_id)


async def _reservation_count(db) -> int:
    async with db.sessions() as session:
        return await session.scalar(select(func.count()).select_from(Reservation))


async def test_reserve_claims_every_number(db, manager, draw_id):
    handle = await manager.reserve_numbers(1, [12, 3, 12])

    assert handle.numbers == [3, 12]
    assert handle.draw_id == draw_id
    assert handle.amount_cents == 2 * 5500
    states = await slot_states(db, draw_id, [3, 12])
    assert states[3] == ("reserved", handle.reservation_id)
    assert states[12] == ("reserved", handle.reservation_id)

    reservation = await _reservation(db, handle.reservation_id)
    assert reservation.status == "active"
    assert reservation.numbers == [3, 12]


async def test_expiry_is_ttl_after_clock(manager, clock):
    handle = await manager.reserve_numbers(1, [1])
    assert handle.expires_at == clock.now + manager.ttl


async def test_taken_number_is_unavailable(db, manager, draw_id):
    await manager.reserve_numbers(1, [42])

    with pytest.raises(NumberUnavailable) as exc_info:
        await manager.reserve_numbers(2, [42])

    assert exc_info.value.number == 42
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"n": 42}
    assert await _reservation_count(db) == 1


async def test_simultaneous_requests_for_one_number(db, manager, draw_id):
    results = await asyncio.gather(
        manager.reserve_numbers(1, [42]),
        manager.reserve_numbers(2, [42]),
        return_exceptions=True,
    )

    handles = [r for r in results if isinstance(r, ReservationHandle)]
    losers = [r for r in results if isinstance(r, NumberUnavailable)]
    assert len(handles) == 1
    assert len(losers) == 1
    assert losers[0].number == 42
    states = await slot_states(db, draw_id, [42])
    assert states[42] == ("reserved", handles[0].reservation_id)
    assert await _reservation_count(db) == 1


async def test_overlapping_request_claims_nothing(db, manager, draw_id):
    await manager.reserve_numbers(1, [4])

    with pytest.raises(NumberUnavailable) as exc_info:
        await manager.reserve_numbers(2, [3, 4])

    assert exc_info.value.number == 4
    states = await slot_states(db, draw_id, [3])
    assert states[3] == ("available", None)
    assert await _reservation_count(db) == 1


async def test_claim_arbitrates_when_precheck_is_stale(db, manager, draw_id, monkeypatch):
    """A request that read stale availability still loses at the conditional write."""
    first = await manager.reserve_numbers(1, [4])

    async def stale_check(*args, **kwargs):
        return None

    monkeypatch.setattr(manager, "_check_available", stale_check)

    with pytest.raises(NumberUnavailable) as exc_info:
        await manager.reserve_numbers(2, [3, 4])

    assert exc_info.value.number == 4
    states = await slot_states(db, draw_id, [3, 4])
    assert states[3] == ("available", None)
    assert states[4] == ("reserved", first.reservation_id)
    assert await _reservation_count(db) == 1


async def test_no_numbers(manager):
    with pytest.raises(NoNumbers):
        await manager.reserve_numbers(1, [])


async def test_numbers_outside_draw(manager):
    with pytest.raises(InvalidNumbers) as exc_info:
        await manager.reserve_numbers(1, [5, 100, -1])
    assert exc_info.value.details == {"numbers": [-1, 100]}


async def test_no_open_draw(db, manager, draw_id):
    async with db.sessions() as session:
        async with session.begin():
            await session.execute(
                update(Draw).where(Draw.id == draw_id).values(status="closed")
            )

    with pytest.raises(NoOpenDraw):
        await manager.reserve_numbers(1, [1])


async def test_expire_stale_releases_numbers(db, manager, clock, draw_id):
    handle = await manager.reserve_numbers(1, [5, 6])

    clock.advance(minutes=14)
    assert await manager.expire_stale() == 0

    clock.advance(minutes=2)
    assert await manager.expire_stale() == 1
    assert await manager.expire_stale() == 0

    reservation = await _reservation(db, handle.reservation_id)
    assert reservation.status == "expired"
    states = await slot_states(db, draw_id, [5, 6])
    assert states == {5: ("available", None), 6: ("available", None)}

    again = await manager.reserve_numbers(2, [5, 6])
    assert again.numbers == [5, 6]


async def test_reserve_sweeps_expired_holders_first(manager, clock):
    await manager.reserve_numbers(1, [8])
    clock.advance(minutes=16)

    handle = await manager.reserve_numbers(2, [8])
    assert handle.numbers == [8]


async def test_expiry_leaves_moved_on_slots_alone(db, manager, clock, draw_id):
    await manager.reserve_numbers(1, [7])
    async with db.sessions() as session:
        async with session.begin():
            await session.execute(
                update(Slot)
                .where(Slot.draw_id == draw_id, Slot.number == 7)
                .values(status="sold", reservation_id=None)
            )

    clock.advance(minutes=16)
    assert await manager.expire_stale() == 1

    states = await slot_states(db, draw_id, [7])
    assert states[7] == ("sold", None)


async def test_pending_payment_is_not_swept(db, manager, clock):
    handle = await manager.reserve_numbers(1, [9])
    await manager.begin_payment(handle.reservation_id, 1)

    clock.advance(hours=1)
    assert await manager.expire_stale() == 0
    reservation = await _reservation(db, handle.reservation_id)
    assert reservation.status == "pending_payment"


async def test_cancel_releases_numbers(db, manager, draw_id):
    handle = await manager.reserve_numbers(1, [20, 21])

    status = await manager.cancel_reservation(str(handle.reservation_id), user_id=1)

    assert status == "cancelled"
    states = await slot_states(db, draw_id, [20, 21])
    assert states == {20: ("available", None), 21: ("available", None)}
    assert await manager.cancel_reservation(handle.reservation_id, user_id=1) == "cancelled"


async def test_cancel_leaves_paid_reservation(db, manager, draw_id):
    handle = await manager.reserve_numbers(1, [30])
    async with db.sessions() as session:
        async with session.begin():
            await session.execute(
                update(Reservation)
                .where(Reservation.id == handle.reservation_id)
                .values(status="paid")
            )
            await session.execute(
                update(Slot)
                .where(Slot.draw_id == draw_id, Slot.number == 30)
                .values(status="sold", reservation_id=None)
            )

    assert await manager.cancel_reservation(handle.reservation_id, user_id=1) == "paid"
    states = await slot_states(db, draw_id, [30])
    assert states[30] == ("sold", None)


async def test_cancel_foreign_reservation(manager):
    handle = await manager.reserve_numbers(1, [31])
    with pytest.raises(NotReservationOwner):
        await manager.cancel_reservation(handle.reservation_id, user_id=2)


@pytest.mark.parametrize("reservation_id", ["not-a-uuid", str(uuid.uuid4())])
async def test_cancel_unknown_reservation(manager, reservation_id):
    with pytest.raises(ReservationNotFound):
        await manager.cancel_reservation(reservation_id, user_id=1)


async def test_abandon_payment_returns_to_active(db, manager):
    handle = await manager.reserve_numbers(1, [40])
    await manager.begin_payment(handle.reservation_id, 1)

    assert await manager.abandon_payment(handle.reservation_id) is True
    reservation = await _reservation(db, handle.reservation_id)
    assert reservation.status == "active"
    assert await manager.abandon_payment(handle.reservation_id) is False


async def test_price_and_size_are_configurable(db, clock, users, draw_id):
    small = ReservationManager(db.sessions, draw_size=10, price_cents=100, clock=clock)

    handle = await small.reserve_numbers(1, [0, 9])
    assert handle.amount_cents == 200
    with pytest.raises(InvalidNumbers):
        await small.reserve_numbers(1, [10])

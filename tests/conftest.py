"""Shared fixtures: a file-backed SQLite store, a controllable clock, a fake PIX gateway."""
from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from raffle.api.main import create_app
from raffle.core.payments import PaymentBridge
from raffle.core.reservations import ReservationManager
from raffle.core.rollover import ensure_open_draw
from raffle.providers.mercadopago import PixCharge
from raffle.shared.config import Settings
from raffle.shared.database import Database
from raffle.shared.errors import PaymentProviderError
from raffle.shared.models import Slot, User
from raffle.shared.security import Identity, issue_token

JWT_SECRET = "test-secret"


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """In-memory stand-in for the Mercado Pago client."""

    def __init__(self) -> None:
        self.charges: dict[str, PixCharge] = {}
        self.created: list[dict] = []
        self.fail_create = False
        self.fail_get = False

    async def create_pix_payment(
        self, amount_cents, description, reservation_id, payer, idempotency_key
    ) -> PixCharge:
        if self.fail_create:
            raise PaymentProviderError()
        payment_id = str(9000 + len(self.charges))
        charge = PixCharge(
            payment_id=payment_id,
            status="pending",
            qr_code="00020126580014br.gov.bcb.pix",
            qr_code_base64="aVZCT1J3MEtHZ28=",
            expires_in=1800,
            raw={"id": int(payment_id), "status": "pending"},
        )
        self.charges[payment_id] = charge
        self.created.append(
            {
                "amount_cents": amount_cents,
                "description": description,
                "reservation_id": reservation_id,
                "payer": payer,
                "idempotency_key": idempotency_key,
            }
        )
        return copy.copy(charge)

    def set_status(self, payment_id: str, status: str, detail: str | None = None) -> None:
        charge = self.charges[payment_id]
        charge.status = status
        charge.status_detail = detail
        charge.raw = {"id": int(payment_id), "status": status}

    async def get_payment(self, payment_id: str) -> PixCharge:
        if self.fail_get or payment_id not in self.charges:
            raise PaymentProviderError("Payment provider lookup failed", provider_status=404)
        return copy.copy(self.charges[payment_id])

    async def aclose(self) -> None:
        pass


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'raffle.db'}")
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def users(db) -> list[int]:
    async with db.sessions() as session:
        async with session.begin():
            for i in (1, 2, 3):
                session.add(
                    User(id=i, name=f"User {i}", email=f"user{i}@example.com", password_hash="x")
                )
    return [1, 2, 3]


@pytest.fixture
async def draw_id(db) -> int:
    async with db.sessions() as session:
        async with session.begin():
            draw = await ensure_open_draw(session, 100)
    return draw.id


@pytest.fixture
def manager(db, clock, users, draw_id) -> ReservationManager:
    return ReservationManager(db.sessions, ttl=timedelta(minutes=15), clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def bridge(db, manager, gateway) -> PaymentBridge:
    return PaymentBridge(db.sessions, manager, gateway)


async def slot_states(db: Database, draw_id: int, numbers) -> dict[int, tuple]:
    async with db.sessions() as session:
        result = await session.execute(
            select(Slot.number, Slot.status, Slot.reservation_id).where(
                Slot.draw_id == draw_id, Slot.number.in_(list(numbers))
            )
        )
        return {n: (status, rid) for n, status, rid in result.all()}


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        sweep_interval_sec=0,
        jwt_secret=JWT_SECRET,
        cookie_secure=False,
        admin_email="admin@example.com",
        admin_password="admin-pass",
        log_level="WARNING",
    )


@pytest.fixture
async def app(settings, gateway):
    application = create_app(settings, gateway=gateway)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def register(client: httpx.AsyncClient, name: str) -> dict[str, str]:
    r = await client.post(
        "/auth/register",
        json={"name": name, "email": f"{name.lower()}@example.com", "password": "secret"},
    )
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


def bearer(user_id: int, secret: str = JWT_SECRET) -> dict[str, str]:
    token = issue_token(Identity(id=user_id, email=f"user{user_id}@example.com"), secret, 3600)
    return {"Authorization": f"Bearer {token}"}

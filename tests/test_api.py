"""HTTP surface: status codes, error bodies and the end-to-end PIX flow."""
from __future__ import annotations

import uuid

from tests.conftest import register


async def _reserve(client, headers, numbers):
    return await client.post("/reservations", json={"numbers": numbers}, headers=headers)


async def _numbers(client) -> dict[int, str]:
    r = await client.get("/numbers")
    assert r.status_code == 200
    return {x["n"]: x["status"] for x in r.json()["numbers"]}


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "raffle"}


async def test_board_starts_available(client):
    numbers = await _numbers(client)
    assert len(numbers) == 100
    assert set(numbers.values()) == {"available"}

    r = await client.get("/draws/current")
    assert r.status_code == 200
    assert r.json()["status"] == "open"


async def test_reserve_then_conflict(client):
    alice = await register(client, "Alice")
    bob = await register(client, "Bob")

    r = await _reserve(client, alice, [42, 7])
    assert r.status_code == 200
    body = r.json()
    assert body["numbers"] == [7, 42]
    assert body["amountCents"] == 11000
    uuid.UUID(body["reservationId"])

    r = await _reserve(client, bob, [42])
    assert r.status_code == 409
    assert r.json()["error"] == "unavailable"
    assert r.json()["n"] == 42

    numbers = await _numbers(client)
    assert numbers[42] == "reserved"
    assert numbers[7] == "reserved"


async def test_reserve_validation_errors(client):
    alice = await register(client, "Alice")

    r = await _reserve(client, alice, [])
    assert r.status_code == 400
    assert r.json()["error"] == "no_numbers"

    r = await _reserve(client, alice, [100])
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_numbers"

    r = await client.post("/reservations", json={"numbers": "seven"}, headers=alice)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_payload"


async def test_reserve_requires_auth(client):
    r = await _reserve(client, {}, [1])
    assert r.status_code == 401
    assert r.json()["error"] == "unauthorized"

    r = await _reserve(client, {"Authorization": "Bearer not-a-token"}, [1])
    assert r.status_code == 401


async def test_cookie_session(client):
    r = await client.post(
        "/auth/register",
        json={"name": "Carol", "email": "carol@example.com", "password": "pw"},
    )
    assert r.status_code == 200
    assert "ns_auth" in r.cookies

    client.cookies.set("ns_auth", r.cookies["ns_auth"])
    r = await client.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "carol@example.com"


async def test_register_and_login(client):
    await register(client, "Dave")

    r = await client.post(
        "/auth/register",
        json={"name": "Dave", "email": "DAVE@example.com", "password": "other"},
    )
    assert r.status_code == 409
    assert r.json()["error"] == "email_in_use"

    r = await client.post("/auth/login", json={"email": "dave@example.com", "password": "nope"})
    assert r.status_code == 401

    r = await client.post("/auth/login", json={"email": "dave@example.com", "password": "secret"})
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "user"


async def test_cancel_and_my_reservations(client):
    alice = await register(client, "Alice")
    bob = await register(client, "Bob")
    rid = (await _reserve(client, alice, [3])).json()["reservationId"]

    r = await client.delete(f"/reservations/{rid}", headers=bob)
    assert r.status_code == 403

    r = await client.delete(f"/reservations/{rid}", headers=alice)
    assert r.status_code == 200
    assert r.json() == {"reservationId": rid, "status": "cancelled"}
    assert (await _numbers(client))[3] == "available"

    r = await client.get("/me/reservations", headers=alice)
    assert r.status_code == 200
    [summary] = r.json()["reservations"]
    assert summary["id"] == rid
    assert summary["status"] == "cancelled"


async def test_pix_flow_sells_numbers(client, gateway):
    alice = await register(client, "Alice")
    rid = (await _reserve(client, alice, [10])).json()["reservationId"]

    r = await client.post("/payments/pix", json={"reservationId": rid}, headers=alice)
    assert r.status_code == 200
    charge = r.json()
    assert charge["status"] == "pending"
    assert charge["qr_code"]
    assert charge["expires_in"] == 1800

    gateway.set_status(charge["id"], "approved", "accredited")
    r = await client.get(f"/payments/{charge['id']}/status", headers=alice)
    assert r.status_code == 200
    assert r.json() == {
        "paymentId": charge["id"],
        "status": "approved",
        "status_detail": "accredited",
    }
    assert (await _numbers(client))[10] == "sold"


async def test_pix_errors(client, gateway):
    alice = await register(client, "Alice")
    bob = await register(client, "Bob")
    rid = (await _reserve(client, alice, [10])).json()["reservationId"]

    r = await client.post("/payments/pix", json={"reservationId": rid}, headers=bob)
    assert r.status_code == 403

    r = await client.post(
        "/payments/pix", json={"reservationId": str(uuid.uuid4())}, headers=alice
    )
    assert r.status_code == 404

    gateway.fail_create = True
    r = await client.post("/payments/pix", json={"reservationId": rid}, headers=alice)
    assert r.status_code == 503
    assert r.json()["error"] == "payment_unavailable"

    await client.delete(f"/reservations/{rid}", headers=alice)
    gateway.fail_create = False
    r = await client.post("/payments/pix", json={"reservationId": rid}, headers=alice)
    assert r.status_code == 409
    assert r.json()["status"] == "cancelled"


async def test_webhook_applies_provider_status(client, gateway):
    alice = await register(client, "Alice")
    rid = (await _reserve(client, alice, [10])).json()["reservationId"]
    charge = (
        await client.post("/payments/pix", json={"reservationId": rid}, headers=alice)
    ).json()
    gateway.set_status(charge["id"], "approved")

    note = {"type": "payment", "action": "payment.updated", "data": {"id": charge["id"]}}
    for _ in range(2):
        r = await client.post("/payments/webhook", json=note)
        assert r.status_code == 200
        assert r.json() == {"received": True}

    assert (await _numbers(client))[10] == "sold"


async def test_webhook_ipn_query_flavour(client, gateway):
    alice = await register(client, "Alice")
    rid = (await _reserve(client, alice, [11])).json()["reservationId"]
    charge = (
        await client.post("/payments/pix", json={"reservationId": rid}, headers=alice)
    ).json()
    gateway.set_status(charge["id"], "rejected")

    r = await client.post(f"/payments/webhook?topic=payment&id={charge['id']}")
    assert r.status_code == 200
    assert (await _numbers(client))[11] == "available"


async def test_webhook_always_acknowledges(client, gateway):
    r = await client.post("/payments/webhook", json={"type": "payment", "data": {"id": "404"}})
    assert r.status_code == 200

    r = await client.post(
        "/payments/webhook", json={"type": "merchant_order", "data": {"id": "1"}}
    )
    assert r.status_code == 200

    r = await client.post("/payments/webhook", content=b"not json")
    assert r.status_code == 200
    assert r.json() == {"received": True}


async def test_admin_listing(client):
    alice = await register(client, "Alice")
    await _reserve(client, alice, [1])
    await _reserve(client, alice, [2])

    r = await client.get("/admin/reservations", headers=alice)
    assert r.status_code == 403

    r = await client.post(
        "/auth/login", json={"email": "admin@example.com", "password": "admin-pass"}
    )
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "admin"
    admin = {"Authorization": f"Bearer {r.json()['token']}"}

    r = await client.get("/admin/reservations", params={"pageSize": 1}, headers=admin)
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert len(body["reservations"]) == 1
    assert body["reservations"][0]["email"] == "alice@example.com"

    r = await client.get("/admin/reservations", params={"status": "paid"}, headers=admin)
    assert r.json()["total"] == 0


async def test_metrics_exposed(client):
    alice = await register(client, "Alice")
    await _reserve(client, alice, [5])

    r = await client.get("/metrics/")
    assert r.status_code == 200
    assert "raffle_reservations_created_total" in r.text

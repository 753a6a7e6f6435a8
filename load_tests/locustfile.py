"""
Locust load-test file for the raffle reservation API.

Usage:
    locust -f load_tests/locustfile.py --host http://localhost:8000

User classes:
- BrowserUser    : anonymous traffic polling the number board
- ReserverUser   : reserves a few available numbers, then cancels
- ContenderUser  : everyone fights over the lowest available number
"""
from __future__ import annotations

import random
import uuid

from locust import HttpUser, between, task


def _register(user: HttpUser) -> dict[str, str]:
    suffix = uuid.uuid4().hex[:12]
    r = user.client.post(
        "/auth/register",
        json={
            "name": f"Load {suffix}",
            "email": f"load_{suffix}@example.com",
            "password": uuid.uuid4().hex,
        },
        name="/auth/register",
    )
    return {"Authorization": f"Bearer {r.json()['token']}"}


def _available(user: HttpUser) -> list[int]:
    r = user.client.get("/numbers", name="/numbers")
    if r.status_code != 200:
        return []
    return [x["n"] for x in r.json()["numbers"] if x["status"] == "available"]


class BrowserUser(HttpUser):
    """Polls the board the way the front-end does."""

    wait_time = between(0.5, 2.0)

    @task(10)
    def numbers(self) -> None:
        self.client.get("/numbers", name="/numbers")

    @task(1)
    def current_draw(self) -> None:
        self.client.get("/draws/current", name="/draws/current")


class ReserverUser(HttpUser):
    """
    Reserves 1-3 random available numbers and cancels them again so the
    board does not drain during the run.  A 409 is a lost race, not an error.
    """

    wait_time = between(0.2, 1.0)

    def on_start(self) -> None:
        self.headers = _register(self)

    @task
    def reserve_and_cancel(self) -> None:
        free = _available(self)
        if not free:
            return
        numbers = random.sample(free, k=min(len(free), random.randint(1, 3)))
        with self.client.post(
            "/reservations",
            json={"numbers": numbers},
            headers=self.headers,
            name="/reservations [POST]",
            catch_response=True,
        ) as response:
            if response.status_code == 409:
                response.success()
                return
            if response.status_code != 200:
                response.failure(f"Unexpected status {response.status_code}")
                return
            reservation_id = response.json()["reservationId"]

        self.client.delete(
            f"/reservations/{reservation_id}",
            headers=self.headers,
            name="/reservations/{id} [DELETE]",
        )


class ContenderUser(HttpUser):
    """
    Bursts of users all asking for the lowest available number.  Losers
    get 409; the winner cancels so the next burst has something to fight for.
    """

    wait_time = between(1.0, 3.0)

    def on_start(self) -> None:
        self.headers = _register(self)

    @task
    def contend(self) -> None:
        free = _available(self)
        if not free:
            return
        target = free[0]
        with self.client.post(
            "/reservations",
            json={"numbers": [target]},
            headers=self.headers,
            name="/reservations [CONTENDED]",
            catch_response=True,
        ) as response:
            if response.status_code == 409:
                response.success()
                return
            if response.status_code != 200:
                response.failure(f"Unexpected status {response.status_code}")
                return
            reservation_id = response.json()["reservationId"]

        self.client.delete(
            f"/reservations/{reservation_id}",
            headers=self.headers,
            name="/reservations/{id} [DELETE]",
        )

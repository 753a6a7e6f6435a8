"""
Cancel and release scenario.

A user reserves two numbers and cancels; a second user then reserves the
same numbers.

Expected: the cancel frees both numbers and the second claim succeeds.
"""
from __future__ import annotations

import httpx

from failure_scenarios import FailureResult, available_numbers, number_status, register_user

SCENARIO_NAME = "cancel_release"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute cancel and release scenario."""
    numbers: list[int] = []
    statuses_after_cancel: dict[int, str] = {}
    second_status: int | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            first = await register_user(client, base_url)
            second = await register_user(client, base_url)
            numbers = (await available_numbers(client, base_url))[:2]
            if len(numbers) < 2:
                raise RuntimeError("need two available numbers")

            r = await client.post(
                f"{base_url}/reservations", json={"numbers": numbers}, headers=first
            )
            r.raise_for_status()
            reservation_id = r.json()["reservationId"]

            cr = await client.delete(f"{base_url}/reservations/{reservation_id}", headers=first)
            cr.raise_for_status()
            current = await number_status(client, base_url)
            statuses_after_cancel = {n: current.get(n) for n in numbers}

            sr = await client.post(
                f"{base_url}/reservations", json={"numbers": numbers}, headers=second
            )
            second_status = sr.status_code
    except Exception as exc:
        error = str(exc)

    correct = (
        bool(numbers)
        and all(s == "available" for s in statuses_after_cancel.values())
        and second_status == 200
    )

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="numbers available after cancel; second claim 200",
        actual_outcome=f"after_cancel={statuses_after_cancel}, second_claim={second_status}",
        correct=correct,
        details={"numbers": numbers},
        error=error,
    )

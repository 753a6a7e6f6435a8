"""
Duplicate webhook scenario.

Simulates the provider delivering the same notification twice, including a
notification for a payment the service never created.

Expected: every delivery is acknowledged with 200 and the reservation the
user holds is left untouched.
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, available_numbers, number_status, register_user

SCENARIO_NAME = "duplicate_webhook"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute duplicate webhook scenario."""
    status_codes: list[int] = []
    held: int | None = None
    after: str | None = None
    error: str | None = None
    unknown_id = str(uuid.uuid4().int)[:12]

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            headers = await register_user(client, base_url)
            free = await available_numbers(client, base_url)
            if not free:
                raise RuntimeError("no available numbers left in the open draw")
            held = free[0]
            r = await client.post(
                f"{base_url}/reservations", json={"numbers": [held]}, headers=headers
            )
            r.raise_for_status()

            notification = {"type": "payment", "action": "payment.updated", "data": {"id": unknown_id}}
            for _ in range(2):
                wr = await client.post(f"{base_url}/payments/webhook", json=notification)
                status_codes.append(wr.status_code)

            after = (await number_status(client, base_url)).get(held)
    except Exception as exc:
        error = str(exc)

    correct = status_codes == [200, 200] and after == "reserved"

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="both deliveries acknowledged, held number still reserved",
        actual_outcome=f"status_codes={status_codes}, number_status={after}",
        correct=correct,
        details={"payment_id": unknown_id, "number": held},
        error=error,
    )

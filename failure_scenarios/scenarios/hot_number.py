"""
Hot number scenario.

Ten users race for the same available number using asyncio.gather.

Expected: exactly one reservation succeeds; every other request gets
409 {error: "unavailable", n: <number>}.
"""
from __future__ import annotations

import asyncio

import httpx

from failure_scenarios import FailureResult, available_numbers, register_user

SCENARIO_NAME = "hot_number"
CONTENDERS = 10


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute hot number scenario."""
    status_codes: list[int] = []
    winners: list[str] = []
    conflict_numbers: list[int] = []
    target: int | None = None
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            users = [await register_user(client, base_url) for _ in range(CONTENDERS)]
            free = await available_numbers(client, base_url)
            if not free:
                raise RuntimeError("no available numbers left in the open draw")
            target = free[0]

            async def send(headers: dict[str, str]) -> None:
                r = await client.post(
                    f"{base_url}/reservations", json={"numbers": [target]}, headers=headers
                )
                status_codes.append(r.status_code)
                body = r.json()
                if r.status_code == 200:
                    winners.append(body["reservationId"])
                elif r.status_code == 409:
                    conflict_numbers.append(body.get("n"))

            await asyncio.gather(*[send(h) for h in users])
    except Exception as exc:
        error = str(exc)

    correct = (
        error is None
        and len(winners) == 1
        and len(conflict_numbers) == CONTENDERS - 1
        and all(n == target for n in conflict_numbers)
    )

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome=f"1 winner, {CONTENDERS - 1} x 409 naming the number",
        actual_outcome=f"winners={len(winners)}, conflicts={len(conflict_numbers)}",
        correct=correct,
        details={"number": target, "status_codes": status_codes, "winners": winners},
        error=error,
    )

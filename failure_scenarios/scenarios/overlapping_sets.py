"""
Overlapping sets scenario.

Two users request overlapping number sets at the same time: A asks for
[x, y], B asks for [y, z].

Expected: at most one of them holds y, and the loser claimed nothing:
its other number is still available afterwards.
"""
from __future__ import annotations

import asyncio

import httpx

from failure_scenarios import FailureResult, available_numbers, number_status, register_user

SCENARIO_NAME = "overlapping_sets"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute overlapping sets scenario."""
    codes: dict[str, int] = {}
    statuses: dict[int, str] = {}
    picked: list[int] = []
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            user_a = await register_user(client, base_url)
            user_b = await register_user(client, base_url)
            free = await available_numbers(client, base_url)
            if len(free) < 3:
                raise RuntimeError("need three available numbers")
            x, y, z = picked = free[:3]

            async def send(name: str, headers: dict[str, str], numbers: list[int]) -> None:
                r = await client.post(
                    f"{base_url}/reservations", json={"numbers": numbers}, headers=headers
                )
                codes[name] = r.status_code

            await asyncio.gather(
                send("a", user_a, [x, y]),
                send("b", user_b, [y, z]),
            )
            statuses = await number_status(client, base_url)
    except Exception as exc:
        error = str(exc)

    correct = False
    if error is None:
        x, y, z = picked
        a_won, b_won = codes.get("a") == 200, codes.get("b") == 200
        correct = (
            not (a_won and b_won)
            and statuses.get(y) == "reserved"
            and statuses.get(x) == ("reserved" if a_won else "available")
            and statuses.get(z) == ("reserved" if b_won else "available")
        )

    observed = {n: statuses.get(n) for n in picked}
    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="shared number held once; loser's other number still available",
        actual_outcome=f"codes={codes}, statuses={observed}",
        correct=correct,
        details={"numbers": picked, "codes": codes},
        error=error,
    )

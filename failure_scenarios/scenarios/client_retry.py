"""
Client retry scenario.

Simulates a client that reserves numbers, assumes the first response was
lost (network drop), then retries with the same idempotency key.

Expected: both attempts return the same reservationId instead of the retry
colliding with its own claim (requires the replay cache to be enabled).
"""
from __future__ import annotations

import uuid

import httpx

from failure_scenarios import FailureResult, available_numbers, register_user

SCENARIO_NAME = "client_retry"


async def run(base_url: str, service_name: str) -> FailureResult:
    """Execute client retry scenario against `base_url`."""
    idem_key = str(uuid.uuid4())
    ids: list[str] = []
    status_codes: list[int] = []
    replay_headers: list[str] = []
    error: str | None = None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            headers = await register_user(client, base_url)
            headers["X-Idempotency-Key"] = idem_key
            free = await available_numbers(client, base_url)
            if not free:
                raise RuntimeError("no available numbers left in the open draw")
            payload = {"numbers": [free[-1]]}

            for _ in range(2):
                r = await client.post(f"{base_url}/reservations", json=payload, headers=headers)
                status_codes.append(r.status_code)
                replay_headers.append(r.headers.get("X-Idempotency-Replay", "false"))
                if r.status_code == 200:
                    ids.append(r.json()["reservationId"])
    except Exception as exc:
        error = str(exc)

    correct = len(ids) == 2 and ids[0] == ids[1]

    return FailureResult(
        scenario_name=SCENARIO_NAME,
        service=service_name,
        expected_outcome="same reservationId on retry",
        actual_outcome=f"status_codes={status_codes}, unique_ids={len(set(ids))}",
        correct=correct,
        details={"idempotency_key": idem_key, "ids": ids, "replay": replay_headers},
        error=error,
    )

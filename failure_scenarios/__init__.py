"""
Failure scenarios package.

Race and retry scenarios run against a live raffle service.  Provides the
FailureResult dataclass and the small HTTP helpers shared by the scenarios.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx


@dataclass
class FailureResult:
    """Result of a single failure scenario run against the service."""

    scenario_name: str
    service: str
    expected_outcome: str
    actual_outcome: str
    correct: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


async def register_user(client: httpx.AsyncClient, base_url: str) -> dict[str, str]:
    """Create a throwaway account and return its Authorization header."""
    suffix = uuid.uuid4().hex[:10]
    r = await client.post(
        f"{base_url}/auth/register",
        json={
            "name": f"Scenario {suffix}",
            "email": f"scenario_{suffix}@example.com",
            "password": uuid.uuid4().hex,
        },
    )
    r.raise_for_status()
    return {"Authorization": f"Bearer {r.json()['token']}"}


async def available_numbers(client: httpx.AsyncClient, base_url: str) -> list[int]:
    r = await client.get(f"{base_url}/numbers")
    r.raise_for_status()
    return [x["n"] for x in r.json()["numbers"] if x["status"] == "available"]


async def number_status(client: httpx.AsyncClient, base_url: str) -> dict[int, str]:
    r = await client.get(f"{base_url}/numbers")
    r.raise_for_status()
    return {x["n"]: x["status"] for x in r.json()["numbers"]}

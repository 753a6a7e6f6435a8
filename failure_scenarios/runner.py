"""
Failure scenario runner.

Executes all failure scenarios against a running raffle service,
collects FailureResult objects, writes JSON to results/failure_results.json,
and prints a Rich summary table.

Usage:
    python -m failure_scenarios.runner [base_url]
"""
from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.table import Table

from failure_scenarios import FailureResult
from failure_scenarios.scenarios import (
    cancel_release,
    client_retry,
    duplicate_webhook,
    hot_number,
    overlapping_sets,
)

DEFAULT_BASE_URL = os.getenv("RAFFLE_URL", "http://localhost:8000")
SERVICE_NAME = "raffle"

SCENARIO_MODULES = [
    hot_number,
    overlapping_sets,
    cancel_release,
    duplicate_webhook,
    client_retry,
]

RESULTS_DIR = Path(__file__).parent.parent / "results"


async def run_all(base_url: str) -> list[FailureResult]:
    """Run every scenario against the service and return all results."""
    all_results: list[FailureResult] = []

    for module in SCENARIO_MODULES:
        try:
            result: FailureResult = await module.run(
                base_url=base_url, service_name=SERVICE_NAME
            )
        except Exception as exc:
            result = FailureResult(
                scenario_name=getattr(module, "SCENARIO_NAME", module.__name__),
                service=SERVICE_NAME,
                expected_outcome="no exception",
                actual_outcome="runner exception",
                correct=False,
                error=str(exc),
            )
        all_results.append(result)

    return all_results


def save_results(results: list[FailureResult]) -> Path:
    """Serialise results to JSON."""
    RESULTS_DIR.mkdir(exist_ok=True)
    output_path = RESULTS_DIR / "failure_results.json"
    serialisable = [
        {
            "scenario_name": r.scenario_name,
            "service": r.service,
            "expected_outcome": r.expected_outcome,
            "actual_outcome": r.actual_outcome,
            "correct": r.correct,
            "details": r.details,
            "error": r.error,
        }
        for r in results
    ]
    with open(output_path, "w") as fh:
        json.dump(
            {"run_at": datetime.now(timezone.utc).isoformat(), "results": serialisable},
            fh,
            indent=2,
            default=str,
        )
    return output_path


def print_table(results: list[FailureResult]) -> None:
    """Print Rich summary table."""
    console = Console()
    table = Table(title="Failure Scenario Results", show_lines=True)
    table.add_column("Scenario", style="cyan", no_wrap=True)
    table.add_column("Expected", style="white")
    table.add_column("Actual", style="white")
    table.add_column("Pass/Fail", justify="center")

    for r in results:
        status = "[green]✓ PASS[/green]" if r.correct else "[red]✗ FAIL[/red]"
        table.add_row(
            r.scenario_name,
            r.expected_outcome,
            r.actual_outcome or (r.error or ""),
            status,
        )

    console.print(table)
    total = len(results)
    passed = sum(1 for r in results if r.correct)
    console.print(f"\n[bold]Total: {total}  Passed: {passed}  Failed: {total - passed}[/bold]")


async def main(base_url: str = DEFAULT_BASE_URL) -> None:
    results = await run_all(base_url)
    path = save_results(results)
    print_table(results)
    print(f"\nResults written to {path}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_BASE_URL))

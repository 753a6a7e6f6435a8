"""Scenario modules used by the runner."""
from __future__ import annotations

from failure_scenarios.scenarios import (
    cancel_release,
    client_retry,
    duplicate_webhook,
    hot_number,
    overlapping_sets,
)

__all__ = [
    "cancel_release",
    "client_retry",
    "duplicate_webhook",
    "hot_number",
    "overlapping_sets",
]

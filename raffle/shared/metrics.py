"""Prometheus counters for the reservation lifecycle."""
from __future__ import annotations

from prometheus_client import Counter

RESERVATIONS_CREATED = Counter(
    "raffle_reservations_created_total",
    "Reservations that claimed all requested numbers",
)
RESERVATION_CONFLICTS = Counter(
    "raffle_reservation_conflicts_total",
    "Reservation attempts rejected before or during the claim",
    ["reason"],
)
RESERVATIONS_EXPIRED = Counter(
    "raffle_reservations_expired_total",
    "Reservations expired by the sweep",
)
PAYMENT_UPDATES = Counter(
    "raffle_payment_updates_total",
    "Payment status updates applied to reservations",
    ["status"],
)
DRAW_ROLLOVERS = Counter(
    "raffle_draw_rollovers_total",
    "Sold-out draws closed and replaced",
)

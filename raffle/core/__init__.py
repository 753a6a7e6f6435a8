"""Reservation lifecycle: claims, expiry, payment transitions and rollover."""

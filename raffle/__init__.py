"""Raffle reservation service."""
